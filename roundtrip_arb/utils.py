"""
Utility functions for the round-trip arbitrage bot.
"""
import sys
from typing import Dict

LAMPORTS_PER_SOL = 1_000_000_000


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file),
    so log files stay free of escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts and counts
        'CYAN': '\033[96m' if use_color else '',    # Mints, pubkeys, signatures, bundle ids
        'YELLOW': '\033[93m' if use_color else '',  # Profit, tip, threshold
        'RED': '\033[91m' if use_color else '',     # Errors and losses
        'DIM': '\033[90m' if use_color else '',     # Low-importance messages
        'RESET': '\033[0m' if use_color else ''
    }


def short_id(value: str, width: int = 8) -> str:
    """Shorten a base58 mint/pubkey/signature for log lines."""
    value = str(value)
    if len(value) <= width:
        return value
    return f"{value[:width]}..."


def format_lamports(lamports: int) -> str:
    """Render a lamport amount with its SOL equivalent, e.g. '10000000 (0.010000000 SOL)'."""
    sign = '-' if lamports < 0 else ''
    whole, frac = divmod(abs(lamports), LAMPORTS_PER_SOL)
    return f"{lamports} ({sign}{whole}.{frac:09d} SOL)"
