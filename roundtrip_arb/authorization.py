"""
Signer authorization: moves the signer's spare balance to the configured
authorization account, once per process.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Set

from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .solana_client import SolanaClient
from .utils import format_lamports, get_terminal_colors

colors = get_terminal_colors()
logger = logging.getLogger(__name__)

# Outcome statuses
DISABLED = "skipped_disabled"
ALREADY_AUTHORIZED = "already_authorized"
ZERO_BALANCE = "skipped_zero_balance"
BELOW_RESERVE = "skipped_below_reserve"
TRANSFERRED = "transferred"


@dataclass(frozen=True)
class AuthorizationOutcome:
    status: str
    balance: Optional[int] = None
    amount: int = 0
    signature: Optional[str] = None

    @property
    def transferred(self) -> bool:
        return self.status == TRANSFERRED


class AuthorizationChecker:
    """
    Ensures the signer is authorized before a trade is built.

    "Already authorized" means a confirmed authorization transfer was made
    for this signer during the current process, or the spare balance above
    the fee reserve is zero. Without an authorization account the check is
    a no-op.
    """

    def __init__(self, authorization_account: Optional[str], reserve_lamports: int = 5000):
        if reserve_lamports < 0:
            raise ValueError("reserve_lamports must be >= 0")
        self.authorization_account = Pubkey.from_string(authorization_account) if authorization_account else None
        self.reserve_lamports = reserve_lamports
        self._authorized: Set[str] = set()
        self._logged_disabled = False

    @property
    def enabled(self) -> bool:
        return self.authorization_account is not None

    def is_authorized(self, signer: Keypair) -> bool:
        return str(signer.pubkey()) in self._authorized

    async def ensure_authorized(self, signer: Keypair, solana: SolanaClient,
                                confirm_timeout: float = 30.0) -> AuthorizationOutcome:
        """
        Raises:
            ServiceError: balance or blockhash lookup failed
            SubmissionError: the transfer was rejected or not confirmed
        """
        if not self.enabled:
            if not self._logged_disabled:
                logger.info(f"{colors['DIM']}No authorization account configured, authorization check disabled{colors['RESET']}")
                self._logged_disabled = True
            return AuthorizationOutcome(status=DISABLED)

        signer_pubkey = signer.pubkey()
        if str(signer_pubkey) in self._authorized:
            return AuthorizationOutcome(status=ALREADY_AUTHORIZED)

        balance = await solana.get_balance(signer_pubkey)
        if balance == 0:
            logger.info("Insufficient SOL balance, can't validate")
            return AuthorizationOutcome(status=ZERO_BALANCE, balance=0)

        # Compare before subtracting: balance <= reserve leaves nothing to move
        if balance <= self.reserve_lamports:
            logger.info(
                f"Balance {format_lamports(balance)} does not exceed reserve "
                f"{self.reserve_lamports}, skipping authorization transfer"
            )
            return AuthorizationOutcome(status=BELOW_RESERVE, balance=balance)

        amount = balance - self.reserve_lamports
        instruction = transfer(TransferParams(
            from_pubkey=signer_pubkey,
            to_pubkey=self.authorization_account,
            lamports=amount
        ))
        blockhash = await solana.get_latest_blockhash()
        message = Message([instruction], signer_pubkey)
        tx = Transaction([signer], message, blockhash)

        logger.info(
            f"Authorizing signer {colors['CYAN']}{signer_pubkey}{colors['RESET']}: "
            f"transferring {colors['GREEN']}{format_lamports(amount)}{colors['RESET']} to "
            f"{colors['CYAN']}{self.authorization_account}{colors['RESET']}"
        )
        signature = await solana.send_and_confirm_transaction(tx, confirm_timeout=confirm_timeout)
        self._authorized.add(str(signer_pubkey))
        logger.info(f"{colors['GREEN']}Authorization confirmed:{colors['RESET']} {colors['CYAN']}{signature}{colors['RESET']}")

        return AuthorizationOutcome(status=TRANSFERRED, balance=balance, amount=amount, signature=signature)
