"""
Jito block-engine client: submits a signed transaction as a single-transaction bundle.
"""
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import base58
import httpx

from .errors import SubmissionError
from .utils import get_terminal_colors

if TYPE_CHECKING:
    from .transaction_builder import TransactionPlan

colors = get_terminal_colors()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionOutcome:
    """Relay acceptance of a bundle. Does not imply on-chain confirmation."""
    bundle_id: str
    signature: str
    blockhash: str
    tip_lamports: int
    submitted_at: float


class JitoClient:
    """Client for Jito bundle submission (JSON-RPC sendBundle)."""

    def __init__(
        self,
        bundle_url: str = "https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/bundles",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.bundle_url = bundle_url
        self.timeout = timeout
        self.client = http_client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0

    def _bundle_request(self, serialized_tx: bytes) -> Dict[str, Any]:
        self._request_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "sendBundle",
            "params": [[base58.b58encode(serialized_tx).decode('ascii')]]
        }

    async def submit(self, plan: "TransactionPlan") -> SubmissionOutcome:
        """
        Send the plan's signed transaction to the relay as a one-transaction bundle.

        A plan is single-use: it is marked consumed before the request is sent,
        so a failed submission is not retried with the same blockhash.

        Raises:
            SubmissionError: plan already submitted, transport failure, timeout,
                non-success status or relay-side rejection
        """
        if plan.submitted:
            raise SubmissionError("Transaction plan was already submitted", signature=plan.signature)
        plan.mark_submitted()

        request = self._bundle_request(bytes(plan.transaction))
        try:
            response = await self.client.post(self.bundle_url, json=request)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SubmissionError(
                f"Jito rejected bundle: HTTP {e.response.status_code} - {e.response.text[:200]}",
                signature=plan.signature
            ) from e
        except httpx.TimeoutException as e:
            raise SubmissionError(f"Jito bundle submission timed out after {self.timeout}s",
                                  signature=plan.signature) from e
        except httpx.HTTPError as e:
            raise SubmissionError(f"Jito bundle submission failed: {e}", signature=plan.signature) from e

        try:
            result = response.json()
        except ValueError as e:
            raise SubmissionError("Jito returned non-JSON response", signature=plan.signature) from e

        if not isinstance(result, dict):
            raise SubmissionError(f"Jito returned unexpected payload: {result!r}", signature=plan.signature)
        if result.get("error"):
            error = result["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise SubmissionError(f"Jito rejected bundle: {message}", signature=plan.signature)

        bundle_id = result.get("result")
        if not isinstance(bundle_id, str) or not bundle_id:
            raise SubmissionError(f"Jito response missing bundle id: {result!r}", signature=plan.signature)

        logger.info(
            f"{colors['GREEN']}Sent to Jito,{colors['RESET']} bundle id: {colors['CYAN']}{bundle_id}{colors['RESET']} "
            f"(tx {colors['CYAN']}{plan.signature}{colors['RESET']})"
        )
        return SubmissionOutcome(
            bundle_id=bundle_id,
            signature=plan.signature,
            blockhash=str(plan.blockhash),
            tip_lamports=plan.tip_lamports,
            submitted_at=time.time()
        )

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
