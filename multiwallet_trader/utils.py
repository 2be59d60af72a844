"""
Utility functions for the multi-wallet trader.
"""
import math
import sys
from typing import Dict, List

from .errors import ValidationError

LAMPORTS_PER_SOL = 1_000_000_000


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file).
    This ensures log files remain clean without ANSI escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Amounts and balances
        'CYAN': '\033[96m' if use_color else '',    # Addresses, signatures, venues
        'YELLOW': '\033[93m' if use_color else '',  # Warnings and skipped wallets
        'RED': '\033[91m' if use_color else '',     # Errors and failed wallets
        'DIM': '\033[90m' if use_color else '',     # Secondary / service messages
        'RESET': '\033[0m' if use_color else ''     # Reset color
    }


def sol_to_lamports(sol: float) -> int:
    """
    Convert a user-entered SOL amount to lamports, flooring fractions.

    Raises:
        ValidationError: If the amount is NaN or infinite
    """
    if not math.isfinite(sol):
        raise ValidationError(f"Invalid SOL amount: {sol}")
    return int(math.floor(sol * LAMPORTS_PER_SOL))


def fmt_sol(lamports: int) -> str:
    """Format lamports as SOL with 6 decimals (display only)."""
    return f"{lamports / LAMPORTS_PER_SOL:.6f}"


def fmt_token(amount: int, decimals: int) -> str:
    """Format a raw token amount with its mint decimals (display only)."""
    return f"{amount / 10 ** decimals:.6f}"


def parse_selection(selection: str, max_index: int) -> List[int]:
    """
    Parse a wallet selection like "all", "1-5,8,10" or "3".

    Ranges are normalized ("5-2" == "2-5"), out-of-range and non-numeric
    tokens are dropped, duplicates collapse.

    Args:
        selection: Operator input
        max_index: Highest valid sub-wallet index

    Returns:
        Strictly ascending list of indices in 1..max_index
    """
    if not selection or selection.strip().lower() == "all":
        return list(range(1, max_index + 1))

    selected = set()
    for part in selection.split(","):
        token = part.strip()
        if not token:
            continue
        if "-" in token:
            bounds = token.split("-")
            if len(bounds) != 2:
                continue
            try:
                a, b = int(bounds[0]), int(bounds[1])
            except ValueError:
                continue
            start, end = min(a, b), max(a, b)
            selected.update(i for i in range(start, end + 1) if 1 <= i <= max_index)
        else:
            try:
                n = int(token)
            except ValueError:
                continue
            if 1 <= n <= max_index:
                selected.add(n)

    return sorted(selected)
