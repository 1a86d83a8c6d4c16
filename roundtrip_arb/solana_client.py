"""
Solana RPC client for balances, blockhashes, lookup tables and transaction sending.
"""
import asyncio
import base64
import logging
from typing import List, Optional, Union

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction

from .errors import ServiceError, SubmissionError

logger = logging.getLogger(__name__)


class SolanaClient:
    """Client for Solana RPC operations with failover support."""

    def __init__(self, rpc_url: str, fallback_rpc_url: Optional[str] = None, timeout: float = 10.0):
        self.rpc_url_primary = rpc_url
        self.rpc_url_fallback = fallback_rpc_url
        self.timeout = timeout
        self._active_rpc_url = rpc_url
        self._failover_used = False  # Track if failover has been used (for logging)
        self.client = AsyncClient(rpc_url, commitment=Confirmed, timeout=timeout)

    @staticmethod
    def _domain(url: str) -> str:
        """Domain part of an RPC URL (full URLs may embed API keys)."""
        return url.split('//')[1].split('/')[0] if '//' in url else url

    async def _switch_to_fallback(self, reason: str) -> bool:
        """
        Switch to fallback RPC if available.

        Returns:
            True if switched to fallback, False if no fallback available
        """
        if not self.rpc_url_fallback or self._active_rpc_url != self.rpc_url_primary:
            return False

        if not self._failover_used:
            logger.warning(
                f"RPC failover: PRIMARY ({self._domain(self.rpc_url_primary)}) -> "
                f"FALLBACK ({self._domain(self.rpc_url_fallback)}), reason: {reason}"
            )
            self._failover_used = True

        old_client = self.client
        self._active_rpc_url = self.rpc_url_fallback
        self.client = AsyncClient(self.rpc_url_fallback, commitment=Confirmed, timeout=self.timeout)
        try:
            await old_client.close()
        except Exception as e:
            logger.debug(f"Error closing primary RPC client: {e}")
        return True

    @staticmethod
    def _is_failover_error(error: Exception) -> bool:
        """Rate-limit, timeout and connection errors trigger failover."""
        error_str = str(error).lower()
        error_type = type(error).__name__
        if '429' in error_str or 'rate limit' in error_str or 'too many requests' in error_str:
            return True
        if 'timeout' in error_str or 'timed out' in error_str:
            return True
        if error_type in ('ConnectError', 'ConnectTimeout', 'ReadTimeout', 'NetworkError', 'TimeoutError'):
            return True
        return 'connection' in error_str

    async def _with_failover(self, step: str, coro_func, *args, **kwargs):
        """
        Run a read-only RPC call, retrying once on the fallback endpoint.

        Raises:
            ServiceError: if the call fails (on both endpoints when a fallback exists)
        """
        try:
            return await coro_func(*args, **kwargs)
        except Exception as e:
            if self._is_failover_error(e) and await self._switch_to_fallback(str(e)):
                try:
                    return await coro_func(*args, **kwargs)
                except Exception as e2:
                    logger.error(f"Both primary and fallback RPC failed for {step}. Last error: {e2}")
                    raise ServiceError(f"RPC {step} failed: {e2}", step=step) from e2
            raise ServiceError(f"RPC {step} failed: {e}", step=step) from e

    async def get_balance(self, pubkey: Pubkey) -> int:
        """
        Get SOL balance in lamports.

        Raises:
            ServiceError: if the RPC call fails
        """
        async def _get_balance():
            resp = await self.client.get_balance(pubkey, commitment=Confirmed)
            return resp.value

        balance = await self._with_failover("get_balance", _get_balance)
        if not isinstance(balance, int) or balance < 0:
            raise ServiceError(f"RPC get_balance returned invalid value: {balance!r}", step="get_balance")
        return balance

    async def get_latest_blockhash(self) -> Hash:
        """
        Get the latest blockhash. Never cached: fetch right before signing.

        Raises:
            ServiceError: if the RPC call fails or returns no blockhash
        """
        async def _get_blockhash():
            resp = await self.client.get_latest_blockhash(commitment=Confirmed)
            return resp.value

        value = await self._with_failover("get_latest_blockhash", _get_blockhash)
        if not value or value.blockhash is None:
            raise ServiceError("RPC get_latest_blockhash returned no value", step="get_latest_blockhash")
        return value.blockhash

    async def get_address_lookup_table_accounts(self, addresses: List[str]) -> List[AddressLookupTableAccount]:
        """
        Resolve Address Lookup Table addresses into AddressLookupTableAccount objects.

        Tables are fetched one at a time, in order, deduplicated.

        Raises:
            ServiceError: if an account cannot be fetched, is missing, or does not deserialize
        """
        if not addresses:
            return []

        alt_accounts = []
        seen = set()
        for alt_address in addresses:
            if alt_address in seen:
                continue
            seen.add(alt_address)

            try:
                pubkey = Pubkey.from_string(alt_address)
            except ValueError as e:
                raise ServiceError(f"Invalid ALT address {alt_address}: {e}", step="resolve_lookup_tables") from e

            async def _get_account():
                resp = await self.client.get_account_info(pubkey, commitment=Confirmed, encoding="base64")
                return resp.value

            account = await self._with_failover("resolve_lookup_tables", _get_account)
            if account is None:
                raise ServiceError(f"ALT account {alt_address} not found", step="resolve_lookup_tables")

            data = account.data
            if isinstance(data, (list, tuple)) and data and isinstance(data[0], str):
                # ["<base64>", "base64"] form
                data = base64.b64decode(data[0])
            elif isinstance(data, str):
                data = base64.b64decode(data)

            try:
                table = AddressLookupTable.deserialize(bytes(data))
            except Exception as e:
                logger.error(f"Failed to deserialize ALT account {alt_address} ({len(data)} bytes): {e}")
                raise ServiceError(f"Cannot load ALT account {alt_address}: {e}", step="resolve_lookup_tables") from e

            alt_accounts.append(AddressLookupTableAccount(pubkey, table.addresses))
            logger.debug(f"Loaded ALT account: {alt_address} with {len(table.addresses)} addresses")

        return alt_accounts

    async def send_and_confirm_transaction(
        self,
        tx: Union[Transaction, VersionedTransaction],
        confirm_timeout: float = 30.0
    ) -> str:
        """
        Send a signed transaction and block until it is confirmed.

        No failover or retry: a resend could double-spend if the first send landed.

        Returns:
            Transaction signature (base58 string)

        Raises:
            SubmissionError: if the RPC rejects the transaction or it is not confirmed in time
        """
        try:
            result = await self.client.send_transaction(tx, opts=TxOpts(skip_preflight=False, preflight_commitment=Confirmed))
        except Exception as e:
            raise SubmissionError(f"RPC rejected transaction: {e}") from e

        if not result.value:
            raise SubmissionError("RPC send_transaction returned no signature")
        signature = result.value
        sig_str = str(signature)
        logger.debug(f"Transaction sent: {sig_str}")

        try:
            confirmation = await asyncio.wait_for(
                self.client.confirm_transaction(signature, commitment=Confirmed),
                timeout=confirm_timeout
            )
        except asyncio.TimeoutError as e:
            raise SubmissionError(f"Transaction not confirmed within {confirm_timeout}s", signature=sig_str) from e
        except Exception as e:
            raise SubmissionError(f"Transaction confirmation failed: {e}", signature=sig_str) from e

        statuses = confirmation.value or []
        status = statuses[0] if statuses else None
        if status is None:
            raise SubmissionError("Transaction status unavailable after confirmation", signature=sig_str)
        if status.err is not None:
            raise SubmissionError(f"Transaction failed on-chain: {status.err}", signature=sig_str)
        return sig_str

    async def close(self):
        """Close RPC client."""
        await self.client.close()
