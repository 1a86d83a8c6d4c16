"""
Main entry point for the round-trip arbitrage bot.
"""
import asyncio
import logging
import signal
import sys
from typing import Optional

from .arbitrage_loop import ArbitrageLoop
from .config import BotConfig, load_config, load_wallet
from .context import BotContext
from .jito_client import JitoClient
from .jupiter_client import JupiterClient
from .solana_client import SolanaClient

logger = logging.getLogger(__name__)


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = 'arbitrage_bot.log'):
    """Log to stdout and (optionally) a file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_context(config: BotConfig, signer) -> BotContext:
    """Create the shared network handles once."""
    return BotContext(
        config=config,
        signer=signer,
        jupiter=JupiterClient(
            config.jupiter_api_url,
            api_key=config.jupiter_api_key,
            timeout=config.request_timeout_seconds,
            requests_per_second=config.jupiter_requests_per_second
        ),
        solana=SolanaClient(
            config.rpc_url,
            fallback_rpc_url=config.fallback_rpc_url,
            timeout=config.request_timeout_seconds
        ),
        jito=JitoClient(config.jito_rpc_url, timeout=config.request_timeout_seconds)
    )


def install_signal_handlers(loop_runner: ArbitrageLoop):
    """Stop the loop at the next iteration boundary on SIGINT/SIGTERM."""
    event_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            event_loop.add_signal_handler(sig, loop_runner.stop)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still reaches run.py
            pass


async def main(mode: Optional[str] = None):
    """
    Load configuration and signer, then run the arbitrage loop until shutdown.

    Raises:
        ConfigError: missing/invalid configuration or signer key
    """
    setup_logging()
    logger.info("Starting Solana round-trip arbitrage bot")

    config = load_config()
    if mode:
        config.mode = mode.lower()
        config.validate()
    signer = load_wallet()
    logger.info(f"Signer: {signer.pubkey()}")

    ctx = build_context(config, signer)
    arb_loop = ArbitrageLoop(ctx, mode=config.mode)
    install_signal_handlers(arb_loop)

    if config.mode == 'live':
        logger.warning("=" * 60)
        logger.warning("LIVE MODE ENABLED - REAL BUNDLES WILL BE SENT!")
        logger.warning("=" * 60)
        if config.authorization_account:
            logger.warning(
                f"Authorization account configured ({config.authorization_account}): "
                f"the signer's balance above {config.authorization_reserve_lamports} lamports "
                f"will be transferred to it before the first trade"
            )
    else:
        logger.info("Mode: SCAN (read-only, nothing is signed or sent)")

    try:
        await arb_loop.run()
    finally:
        await ctx.close()
        logger.info("Bot stopped")


if __name__ == '__main__':
    asyncio.run(main())
