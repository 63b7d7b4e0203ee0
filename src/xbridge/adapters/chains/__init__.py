# src/xbridge/adapters/chains/__init__.py
"""
Chain Adapters - Octra and Ethereum Sepolia

Each client implements the ChainGateway port on top of its chain's RPC.
"""

from xbridge.adapters.chains.base import ChainClient
from xbridge.adapters.chains.octra import OctraClient
from xbridge.adapters.chains.sepolia import SepoliaClient

__all__ = ["ChainClient", "OctraClient", "SepoliaClient"]
