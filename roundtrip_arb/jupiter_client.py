"""
Jupiter API client for quotes and swap instructions.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .errors import ParseError, ServiceError
from .utils import short_id

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Minimum-interval rate limiter for Jupiter API requests.

    Spaces consecutive requests at least 1/requests_per_second apart.
    A rate of 0 disables limiting.
    """

    def __init__(self, requests_per_second: float = 1.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0.0
        self._last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made."""
        if self.min_interval <= 0:
            return
        async with self._lock:
            time_since_last = time.monotonic() - self._last_request_time
            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)
            self._last_request_time = time.monotonic()


@dataclass(frozen=True)
class QuoteRequest:
    """Parameters of a single quote leg. Amount is in the input asset's smallest unit."""
    input_mint: str
    output_mint: str
    amount: int
    only_direct_routes: bool = False
    slippage_bps: int = 0
    max_accounts: int = 20

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise ValueError(f"amount must be a positive integer, got {self.amount!r}")
        if self.slippage_bps < 0:
            raise ValueError(f"slippage_bps must be >= 0, got {self.slippage_bps}")
        if self.max_accounts <= 0:
            raise ValueError(f"max_accounts must be > 0, got {self.max_accounts}")
        if self.input_mint == self.output_mint:
            raise ValueError("input_mint and output_mint must differ")

    def to_params(self) -> Dict[str, Any]:
        """Query parameters for GET /quote."""
        return {
            "inputMint": self.input_mint,
            "outputMint": self.output_mint,
            "amount": str(self.amount),
            "onlyDirectRoutes": str(self.only_direct_routes).lower(),
            "slippageBps": self.slippage_bps,
            "maxAccounts": self.max_accounts,
        }


@dataclass
class JupiterQuote:
    """Quote response from Jupiter API."""
    input_mint: str
    in_amount: int
    output_mint: str
    out_amount: int
    other_amount_threshold: int
    price_impact_pct: str
    route_plan: List[Dict[str, Any]]
    swap_mode: str = "ExactIn"
    slippage_bps: int = 0
    context_slot: Optional[int] = None
    time_taken: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire shape of the quote as expected in quoteResponse (amounts string-encoded)."""
        return {
            "inputMint": self.input_mint,
            "inAmount": str(self.in_amount),
            "outputMint": self.output_mint,
            "outAmount": str(self.out_amount),
            "otherAmountThreshold": str(self.other_amount_threshold),
            "swapMode": self.swap_mode,
            "slippageBps": self.slippage_bps,
            "priceImpactPct": self.price_impact_pct,
            "routePlan": self.route_plan,
        }


@dataclass
class SwapAccountMeta:
    """Account metadata for swap instruction."""
    pubkey: str
    is_signer: bool
    is_writable: bool


@dataclass
class SwapInstruction:
    """Single instruction descriptor from Jupiter API (data is base64)."""
    program_id: str
    accounts: List[SwapAccountMeta]
    data: str


@dataclass
class JupiterSwapInstructionsResponse:
    """Swap instructions response from Jupiter API."""
    compute_unit_limit: int
    setup_instructions: List[SwapInstruction]
    swap_instruction: SwapInstruction
    address_lookup_table_addresses: List[str] = field(default_factory=list)


def parse_amount(data: Dict[str, Any], key: str, default: Optional[Any] = None) -> int:
    """
    Parse a string-encoded non-negative integer amount from a response.

    Raises:
        ParseError: if the field is not representable as a non-negative integer
    """
    raw = data.get(key, default)
    if raw is None:
        raise ParseError(f"Missing amount field '{key}' in response", step="parse")
    if isinstance(raw, bool) or isinstance(raw, float):
        raise ParseError(f"Amount field '{key}' is not an integer: {raw!r}", step="parse")
    try:
        value = int(str(raw).strip())
    except ValueError as e:
        raise ParseError(f"Amount field '{key}' is not an integer: {raw!r}", step="parse") from e
    if value < 0:
        raise ParseError(f"Amount field '{key}' is negative: {value}", step="parse")
    return value


def chain_request(first_quote: JupiterQuote, only_direct_routes: bool = False,
                  slippage_bps: int = 0, max_accounts: int = 20) -> QuoteRequest:
    """Build the return-leg request: it consumes exactly what the first leg produced."""
    return QuoteRequest(
        input_mint=first_quote.output_mint,
        output_mint=first_quote.input_mint,
        amount=first_quote.out_amount,
        only_direct_routes=only_direct_routes,
        slippage_bps=slippage_bps,
        max_accounts=max_accounts,
    )


def merge_quotes(quote0: JupiterQuote, quote1: JupiterQuote, tip_lamports: int) -> JupiterQuote:
    """
    Merge two chained legs into a single round-trip quote.

    The merged quote keeps leg 0's input side, takes leg 1's output side,
    concatenates both route plans and raises otherAmountThreshold by the tip.
    """
    return JupiterQuote(
        input_mint=quote0.input_mint,
        in_amount=quote0.in_amount,
        output_mint=quote1.output_mint,
        out_amount=quote1.out_amount,
        other_amount_threshold=quote0.other_amount_threshold + tip_lamports,
        price_impact_pct="0",
        route_plan=list(quote0.route_plan) + list(quote1.route_plan),
        swap_mode=quote0.swap_mode,
        slippage_bps=quote0.slippage_bps,
        context_slot=quote0.context_slot,
    )


class JupiterClient:
    """Client for the Jupiter swap API (quote + swap-instructions)."""

    def __init__(
        self,
        api_url: str = "https://api.jup.ag/swap/v1",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        requests_per_second: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize Jupiter API client.

        Args:
            api_url: Base URL of the swap API (quote and swap-instructions live under it)
            api_key: Jupiter API key, sent as x-api-key
            timeout: Per-request timeout in seconds
            requests_per_second: Rate limit for Jupiter API requests (0 disables)
            http_client: Pre-built httpx client (tests)
        """
        self.api_url = api_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.rate_limiter = RateLimiter(requests_per_second=requests_per_second)

        headers = {}
        if api_key:
            # Jupiter API expects API key in x-api-key header, not Authorization
            headers["x-api-key"] = api_key

        self.client = http_client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def _request_json(self, method: str, path: str, step: str, **kwargs) -> Dict[str, Any]:
        """Issue one request and return the decoded JSON object, mapping failures to ServiceError."""
        await self.rate_limiter.acquire()
        url = f"{self.api_url}{path}"
        try:
            if method == "GET":
                response = await self.client.get(url, **kwargs)
            else:
                response = await self.client.post(url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ServiceError(
                f"Jupiter {step} failed: HTTP {status} - {e.response.text[:200]}",
                step=step,
                status_code=status
            ) from e
        except httpx.TimeoutException as e:
            raise ServiceError(f"Jupiter {step} timed out after {self.timeout}s", step=step) from e
        except httpx.HTTPError as e:
            raise ServiceError(f"Jupiter {step} request failed: {e}", step=step) from e

        try:
            data = response.json()
        except ValueError as e:
            raise ServiceError(f"Jupiter {step} returned non-JSON body", step=step) from e
        if not isinstance(data, dict):
            raise ServiceError(f"Jupiter {step} returned unexpected payload type {type(data).__name__}", step=step)
        if "error" in data and "outAmount" not in data and "swapInstruction" not in data:
            raise ServiceError(f"Jupiter {step} error: {data['error']}", step=step)
        return data

    async def get_quote(self, request: QuoteRequest) -> JupiterQuote:
        """
        Get a quote for one swap leg. Single attempt, no retries.

        Raises:
            ServiceError: network failure, non-success status or malformed payload
            ParseError: amount fields not representable as non-negative integers
        """
        params = request.to_params()
        start_time = time.time()
        data = await self._request_json("GET", "/quote", step="quote", params=params)

        if "outAmount" not in data:
            raise ServiceError("Jupiter quote response missing outAmount", step="quote")
        route_plan = data.get("routePlan", [])
        if not isinstance(route_plan, list):
            raise ServiceError("Jupiter quote routePlan is not a list", step="quote")

        out_amount = parse_amount(data, "outAmount")
        quote = JupiterQuote(
            input_mint=data.get("inputMint", request.input_mint),
            in_amount=parse_amount(data, "inAmount", default=request.amount),
            output_mint=data.get("outputMint", request.output_mint),
            out_amount=out_amount,
            other_amount_threshold=parse_amount(data, "otherAmountThreshold", default=out_amount),
            price_impact_pct=str(data.get("priceImpactPct", "0")),
            route_plan=route_plan,
            swap_mode=data.get("swapMode", "ExactIn"),
            slippage_bps=parse_amount(data, "slippageBps", default=request.slippage_bps),
            context_slot=data.get("contextSlot"),
            time_taken=time.time() - start_time
        )

        logger.debug(
            f"Quote: {short_id(request.input_mint)} -> {short_id(request.output_mint)} "
            f"in={quote.in_amount} out={quote.out_amount} impact={quote.price_impact_pct} "
            f"({quote.time_taken * 1000:.0f}ms)"
        )
        return quote

    def _parse_instruction(self, instr_data: Any, name: str) -> SwapInstruction:
        """
        Parse an instruction descriptor.

        Accounts must be objects with pubkey/isSigner/isWritable; a bare list of
        pubkeys lacks the meta flags needed to build an Instruction.
        """
        if not isinstance(instr_data, dict):
            raise ParseError(f"{name} is not an object: {type(instr_data).__name__}", step="swap_instructions")
        raw_accounts = instr_data.get("accounts", [])
        if not isinstance(raw_accounts, list):
            raise ParseError(f"{name} accounts is not a list", step="swap_instructions")
        accounts = []
        for account_data in raw_accounts:
            if not isinstance(account_data, dict) or "pubkey" not in account_data:
                raise ParseError(
                    f"{name} has an account without metadata: {account_data!r}",
                    step="swap_instructions"
                )
            accounts.append(SwapAccountMeta(
                pubkey=account_data["pubkey"],
                is_signer=bool(account_data.get("isSigner", False)),
                is_writable=bool(account_data.get("isWritable", False))
            ))
        program_id = instr_data.get("programId")
        if not program_id or not isinstance(program_id, str):
            raise ParseError(f"{name} is missing programId", step="swap_instructions")
        instr_payload = instr_data.get("data", "")
        if not isinstance(instr_payload, str):
            raise ParseError(
                f"{name} data must be a base64 string, got {type(instr_payload).__name__}",
                step="swap_instructions"
            )
        return SwapInstruction(
            program_id=program_id,
            accounts=accounts,
            data=instr_payload
        )

    async def get_swap_instructions(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        compute_unit_price_micro_lamports: int = 1
    ) -> JupiterSwapInstructionsResponse:
        """
        Get executable swap instructions for a (merged) quote.

        Args:
            quote: Quote to execute, usually the merged round trip
            user_public_key: Signer public key (base58)
            compute_unit_price_micro_lamports: Priority fee price passed to Jupiter

        Raises:
            ServiceError: network failure, non-success status, missing swapInstruction
            ParseError: malformed instruction descriptors or numeric fields
        """
        payload = {
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": False,
            "useSharedAccounts": False,
            "computeUnitPriceMicroLamports": compute_unit_price_micro_lamports,
            "dynamicComputeUnitLimit": True,
            "skipUserAccountsRpcCalls": True,
            "quoteResponse": quote.to_payload(),
        }

        data = await self._request_json("POST", "/swap-instructions", step="swap_instructions", json=payload)

        if not data.get("swapInstruction"):
            raise ServiceError("Jupiter swap-instructions response missing swapInstruction", step="swap_instructions")

        setup_instructions = [
            self._parse_instruction(instr, f"setupInstructions[{i}]")
            for i, instr in enumerate(data.get("setupInstructions") or [])
        ]
        swap_instruction = self._parse_instruction(data["swapInstruction"], "swapInstruction")

        raw_alts = data.get("addressLookupTableAddresses") or []
        if not isinstance(raw_alts, list) or not all(isinstance(a, str) for a in raw_alts):
            raise ParseError("addressLookupTableAddresses must be a list of strings", step="swap_instructions")
        # Deduplicate while preserving order
        seen = set()
        alt_addresses = [a for a in raw_alts if not (a in seen or seen.add(a))]

        response = JupiterSwapInstructionsResponse(
            compute_unit_limit=parse_amount(data, "computeUnitLimit"),
            setup_instructions=setup_instructions,
            swap_instruction=swap_instruction,
            address_lookup_table_addresses=alt_addresses
        )

        logger.debug(
            f"Swap instructions: {len(setup_instructions)} setup, 1 swap, "
            f"{len(alt_addresses)} ALTs, "
            f"CU limit {response.compute_unit_limit}"
        )
        return response

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
