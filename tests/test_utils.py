"""
Tests for utils.py
"""
from unittest.mock import patch

from roundtrip_arb.utils import format_lamports, get_terminal_colors, short_id


class TestGetTerminalColors:
    """Tests for get_terminal_colors function."""

    def test_get_terminal_colors_with_tty(self):
        """Test get_terminal_colors returns color codes when stdout is a TTY."""
        with patch('sys.stdout.isatty', return_value=True):
            colors = get_terminal_colors()
            assert colors['GREEN'] == '\033[92m'
            assert colors['CYAN'] == '\033[96m'
            assert colors['YELLOW'] == '\033[93m'
            assert colors['RED'] == '\033[91m'
            assert colors['DIM'] == '\033[90m'
            assert colors['RESET'] == '\033[0m'

    def test_get_terminal_colors_without_tty(self):
        """Test get_terminal_colors returns empty strings when stdout is not a TTY."""
        with patch('sys.stdout.isatty', return_value=False):
            colors = get_terminal_colors()
            assert all(value == '' for value in colors.values())


class TestFormatting:
    """Tests for log formatting helpers."""

    def test_short_id_truncates(self):
        """Long base58 strings are cut to the requested width."""
        assert short_id("So11111111111111111111111111111111111111112") == "So111111..."
        assert short_id("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", width=4) == "EPjF..."

    def test_short_id_keeps_short_values(self):
        assert short_id("abc") == "abc"

    def test_format_lamports(self):
        assert format_lamports(10_000_000) == "10000000 (0.010000000 SOL)"
        assert format_lamports(1_500_000_000) == "1500000000 (1.500000000 SOL)"
        assert format_lamports(0) == "0 (0.000000000 SOL)"

    def test_format_negative_lamports(self):
        assert format_lamports(-1000) == "-1000 (-0.000001000 SOL)"
