"""
Shared runtime context: service handles and signer, created once at startup.
"""
from dataclasses import dataclass

from solders.keypair import Keypair

from .config import BotConfig
from .jito_client import JitoClient
from .jupiter_client import JupiterClient
from .solana_client import SolanaClient


@dataclass(frozen=True)
class BotContext:
    """Read-only handles passed into every component operation."""
    config: BotConfig
    signer: Keypair
    jupiter: JupiterClient
    solana: SolanaClient
    jito: JitoClient

    async def close(self):
        """Close every network handle."""
        await self.jupiter.close()
        await self.solana.close()
        await self.jito.close()
