"""
Arbitrage loop: quote -> evaluate -> authorize -> build -> submit, one iteration at a time.
"""
import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .authorization import AuthorizationChecker
from .context import BotContext
from .errors import ArbBotError, ServiceError, SubmissionError
from .jito_client import SubmissionOutcome
from .jupiter_client import QuoteRequest, chain_request
from .profit import ProfitVerdict, check_chained, evaluate
from .transaction_builder import TransactionBuilder, TransactionPlan
from .utils import format_lamports, get_terminal_colors, short_id

colors = get_terminal_colors()
logger = logging.getLogger(__name__)


class LoopState(enum.Enum):
    IDLE = "idle"
    QUOTING = "quoting"
    EVALUATING = "evaluating"
    SKIP_ITERATION = "skip_iteration"
    AUTHORIZING = "authorizing"
    BUILDING = "building"
    SUBMITTING = "submitting"


@dataclass
class IterationResult:
    """What one iteration reached and produced.

    final_state is the last state entered; failed_step is set when an error
    aborted the iteration in that state.
    """
    final_state: LoopState
    verdict: Optional[ProfitVerdict] = None
    plan: Optional[TransactionPlan] = None
    outcome: Optional[SubmissionOutcome] = None
    error: Optional[Exception] = None
    failed_step: Optional[LoopState] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def submitted(self) -> bool:
        return self.outcome is not None


class ArbitrageLoop:
    """Orchestrates iterations. Iterations never overlap."""

    def __init__(
        self,
        ctx: BotContext,
        authorizer: Optional[AuthorizationChecker] = None,
        builder: Optional[TransactionBuilder] = None,
        mode: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None
    ):
        self.ctx = ctx
        config = ctx.config
        self.authorizer = authorizer or AuthorizationChecker(
            config.authorization_account, config.authorization_reserve_lamports
        )
        self.builder = builder or TransactionBuilder(self.authorizer)
        self.mode = (mode or config.mode).lower()
        self.stop_event = stop_event or asyncio.Event()
        self.state = LoopState.IDLE
        self.iterations = 0
        self.consecutive_failures = 0
        self._last_submitted_blockhash: Optional[str] = None
        self._lock = asyncio.Lock()

    def _enter(self, state: LoopState):
        logger.debug(f"{colors['DIM']}State: {self.state.value} -> {state.value}{colors['RESET']}")
        self.state = state

    def _first_leg_request(self) -> QuoteRequest:
        config = self.ctx.config
        return QuoteRequest(
            input_mint=config.base_mint,
            output_mint=config.quote_mint,
            amount=config.probe_amount_lamports,
            only_direct_routes=config.only_direct_routes,
            slippage_bps=config.slippage_bps,
            max_accounts=config.max_accounts
        )

    def _abort(self, result: IterationResult, error: Exception) -> IterationResult:
        """Record an iteration-aborting error and log it with enough context to reproduce."""
        config = self.ctx.config
        step = self.state
        result.error = error
        result.failed_step = step
        result.final_state = step
        context = (
            f"step={step.value} base={short_id(config.base_mint)} quote={short_id(config.quote_mint)} "
            f"probe={config.probe_amount_lamports}"
        )
        if result.verdict is not None:
            context += f" diff={result.verdict.diff} tip={result.verdict.tip_lamports}"
        if isinstance(error, SubmissionError) and error.signature:
            context += f" signature={error.signature}"
        logger.error(f"{colors['RED']}Iteration aborted ({type(error).__name__}):{colors['RESET']} {error} [{context}]")
        return result

    async def run_once(self) -> IterationResult:
        """Run one full iteration and return to IDLE. Per-iteration errors are caught and returned."""
        async with self._lock:
            try:
                return await self._iterate()
            finally:
                self.iterations += 1
                self.state = LoopState.IDLE

    async def _iterate(self) -> IterationResult:
        ctx = self.ctx
        config = ctx.config
        start = time.monotonic()
        result = IterationResult(final_state=LoopState.QUOTING)

        # Quoting: leg 0 then the chained return leg
        self._enter(LoopState.QUOTING)
        try:
            request0 = self._first_leg_request()
            quote0 = await ctx.jupiter.get_quote(request0)
            request1 = chain_request(
                quote0,
                only_direct_routes=config.only_direct_routes,
                slippage_bps=config.slippage_bps,
                max_accounts=config.max_accounts
            )
            check_chained(quote0, request1)
            quote1 = await ctx.jupiter.get_quote(request1)
        except (ArbBotError, ValueError) as e:
            return self._abort(result, e)

        # Evaluating
        self._enter(LoopState.EVALUATING)
        result.final_state = LoopState.EVALUATING
        try:
            verdict = evaluate(quote0, request0.amount, quote1, config.profit_threshold_lamports)
        except ValueError as e:
            return self._abort(result, e)
        result.verdict = verdict

        if verdict.diff < 0:
            logger.info(f"Not profitable, skipping. diffLamports: {colors['RED']}-{verdict.loss}{colors['RESET']}")
        else:
            logger.info(f"diffLamports: {colors['YELLOW']}{verdict.diff}{colors['RESET']}")

        if verdict.is_profitable and verdict.tip_lamports <= 0:
            logger.info(f"diffLamports {verdict.diff} leaves no tip, skipping")
        if not verdict.is_profitable or verdict.tip_lamports <= 0:
            self._enter(LoopState.SKIP_ITERATION)
            result.final_state = LoopState.SKIP_ITERATION
            return result

        logger.info(
            f"{colors['YELLOW']}Profitable round trip:{colors['RESET']} diff={verdict.diff} "
            f"> threshold={verdict.threshold}, tip={colors['YELLOW']}{verdict.tip_lamports}{colors['RESET']}, "
            f"net={verdict.net_profit}"
        )
        if self.mode != 'live':
            logger.info(f"{colors['DIM']}Mode '{self.mode}': not executing{colors['RESET']}")
            return result

        # Authorizing
        self._enter(LoopState.AUTHORIZING)
        result.final_state = LoopState.AUTHORIZING
        try:
            await self.authorizer.ensure_authorized(
                ctx.signer, ctx.solana, confirm_timeout=config.confirm_timeout_seconds
            )
        except (ArbBotError, ValueError) as e:
            return self._abort(result, e)

        # Building
        self._enter(LoopState.BUILDING)
        result.final_state = LoopState.BUILDING
        try:
            plan = await self.builder.build(ctx, quote0, quote1, verdict.tip_lamports)
        except (ArbBotError, ValueError) as e:
            return self._abort(result, e)
        result.plan = plan

        # Submitting
        self._enter(LoopState.SUBMITTING)
        result.final_state = LoopState.SUBMITTING
        if self.stop_event.is_set():
            logger.warning("Shutdown requested, discarding signed transaction without submitting")
            return result
        blockhash = str(plan.blockhash)
        if blockhash == self._last_submitted_blockhash:
            return self._abort(result, ServiceError(
                f"Blockhash {blockhash} already used by the previous submission", step="submit"
            ))
        try:
            self._last_submitted_blockhash = blockhash
            result.outcome = await ctx.jito.submit(plan)
        except (ArbBotError, ValueError) as e:
            return self._abort(result, e)

        duration_ms = (time.monotonic() - start) * 1000
        logger.info(
            f"Submitted round trip: tip {format_lamports(verdict.tip_lamports)}, "
            f"bundle {colors['CYAN']}{result.outcome.bundle_id}{colors['RESET']}. "
            f"Total duration: {duration_ms:.0f}ms"
        )
        return result

    def next_delay(self, result: IterationResult) -> float:
        """Delay before the next iteration: fixed interval, exponential backoff after failures."""
        config = self.ctx.config
        if result.failed:
            self.consecutive_failures += 1
            backoff = config.failure_backoff_seconds * (2 ** (self.consecutive_failures - 1))
            return max(config.loop_interval_seconds, min(backoff, config.max_backoff_seconds))
        self.consecutive_failures = 0
        return config.loop_interval_seconds

    async def _sleep(self, seconds: float):
        """Sleep that wakes up early when shutdown is requested."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self):
        self.stop_event.set()

    async def run(self, max_iterations: Optional[int] = None):
        """Repeat iterations until stop() is called (or max_iterations is reached)."""
        logger.info(
            f"Starting arbitrage loop: mode={colors['CYAN']}{self.mode}{colors['RESET']}, "
            f"{short_id(self.ctx.config.base_mint)} -> {short_id(self.ctx.config.quote_mint)} -> "
            f"{short_id(self.ctx.config.base_mint)}, probe={format_lamports(self.ctx.config.probe_amount_lamports)}, "
            f"threshold={colors['YELLOW']}{self.ctx.config.profit_threshold_lamports}{colors['RESET']}"
        )
        completed = 0
        while not self.stop_event.is_set():
            try:
                result = await self.run_once()
            except Exception as e:
                logger.error(f"Unexpected error in arbitrage loop: {e}", exc_info=True)
                result = IterationResult(final_state=LoopState.IDLE, error=e)
            completed += 1
            if max_iterations is not None and completed >= max_iterations:
                break
            await self._sleep(self.next_delay(result))
        logger.info(f"{colors['DIM']}Arbitrage loop stopped after {completed} iterations{colors['RESET']}")
