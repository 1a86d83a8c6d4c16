"""
Solana round-trip arbitrage bot: Jupiter quotes, atomic v0 transaction, Jito bundle.
"""
__version__ = "0.1.0"
