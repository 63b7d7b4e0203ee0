# src/xbridge/__init__.py
"""
XBridge - Custodial Cross-Chain Swap Settlement

A settlement service that watches deposits on Octra and Ethereum Sepolia,
verifies the swap intent embedded in each deposit, prices it through a
virtual AMM oracle and pays out on the opposite chain.
"""

__version__ = "1.0.0"
__author__ = "Masih Sadri"
