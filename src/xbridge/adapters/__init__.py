# src/xbridge/adapters/__init__.py
"""
Adapters Layer - External Interfaces

This package contains all adapters for external systems:
- Chains (Octra and Sepolia RPC)
- Persistence (SQLite intent store)
- Telegram (operator alerts)
- Formatting (output)
"""

__all__ = []
