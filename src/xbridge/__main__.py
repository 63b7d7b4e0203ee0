# src/xbridge/__main__.py
"""Module entry point: python -m xbridge."""
from xbridge.app import main

main()
