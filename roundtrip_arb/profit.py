"""
Round-trip profitability evaluation. Pure functions, no I/O.
"""
from dataclasses import dataclass

from .jupiter_client import JupiterQuote, QuoteRequest


@dataclass(frozen=True)
class ProfitVerdict:
    """Outcome of comparing the return leg's output with the first leg's input.

    diff is signed: negative means the round trip loses base-asset units.
    """
    diff: int
    is_profitable: bool
    tip_lamports: int
    threshold: int

    @property
    def loss(self) -> int:
        """Magnitude of the loss (0 when diff >= 0)."""
        return -self.diff if self.diff < 0 else 0

    @property
    def net_profit(self) -> int:
        """Profit kept after paying the tip (0 when not profitable)."""
        return self.diff - self.tip_lamports if self.is_profitable else 0


def evaluate(
    quote0: JupiterQuote,
    quote0_input_amount: int,
    quote1: JupiterQuote,
    threshold: int
) -> ProfitVerdict:
    """
    Decide whether a chained quote pair is worth executing.

    Profitable iff quote1.out_amount - quote0_input_amount > threshold.
    The tip is half the gross difference (integer division); the remainder
    is kept as net profit.

    Raises:
        ValueError: on negative amounts or threshold
    """
    if quote0_input_amount < 0 or quote1.out_amount < 0:
        raise ValueError("amounts must be non-negative")
    if threshold < 0:
        raise ValueError("threshold must be non-negative")

    out_amount = quote1.out_amount
    if out_amount < quote0_input_amount:
        return ProfitVerdict(
            diff=-(quote0_input_amount - out_amount),
            is_profitable=False,
            tip_lamports=0,
            threshold=threshold
        )

    diff = out_amount - quote0_input_amount
    if diff <= threshold:
        return ProfitVerdict(diff=diff, is_profitable=False, tip_lamports=0, threshold=threshold)

    return ProfitVerdict(diff=diff, is_profitable=True, tip_lamports=diff // 2, threshold=threshold)


def check_chained(quote0: JupiterQuote, request1: QuoteRequest) -> None:
    """Raise ValueError unless the return leg consumes exactly leg 0's output."""
    if request1.amount != quote0.out_amount:
        raise ValueError(
            f"Return leg input {request1.amount} does not match first leg output {quote0.out_amount}"
        )
    if request1.input_mint != quote0.output_mint:
        raise ValueError(
            f"Return leg input mint {request1.input_mint} does not match first leg output mint {quote0.output_mint}"
        )
