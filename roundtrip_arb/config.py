"""
Configuration loading and validation.

Values come from (highest precedence first): environment variables / .env,
the "arbitrage" section of config.json, then the defaults below.
"""
import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import base58
import dotenv
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .errors import ConfigError

logger = logging.getLogger(__name__)

WSOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
JITO_TIP_ACCOUNT = "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY"

PROJECT_ROOT = Path(__file__).parent.parent


@dataclass
class BotConfig:
    """Runtime configuration.

    All amounts are integers in the smallest unit of the asset
    (lamports for SOL).
    """
    rpc_url: str = "https://solana-rpc.publicnode.com"
    fallback_rpc_url: Optional[str] = None
    jupiter_api_url: str = "https://api.jup.ag/swap/v1"
    jupiter_api_key: Optional[str] = None
    jito_rpc_url: str = "https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/bundles"

    base_mint: str = WSOL_MINT  # asset the round trip starts and ends in
    quote_mint: str = USDC_MINT  # intermediate asset
    tip_account: str = JITO_TIP_ACCOUNT  # relay tip recipient
    authorization_account: Optional[str] = None  # no default: authorization disabled unless set
    authorization_reserve_lamports: int = 5000  # kept back to pay the authorization tx fee

    profit_threshold_lamports: int = 1000  # diff must strictly exceed this
    probe_amount_lamports: int = 10_000_000  # 0.01 SOL in leg 0
    slippage_bps: int = 0
    max_accounts: int = 20
    only_direct_routes: bool = False
    compute_unit_price_micro_lamports: int = 1

    request_timeout_seconds: float = 10.0
    confirm_timeout_seconds: float = 30.0
    loop_interval_seconds: float = 0.2
    failure_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    jupiter_requests_per_second: float = 5.0

    mode: str = "scan"

    def validate(self) -> None:
        """Raise ConfigError listing every invalid field."""
        problems: List[str] = []

        for name in ("rpc_url", "jupiter_api_url", "jito_rpc_url"):
            value = getattr(self, name)
            if not value or not value.startswith(("http://", "https://")):
                problems.append(f"{name} must be an http(s) URL, got {value!r}")
        if self.fallback_rpc_url and not self.fallback_rpc_url.startswith(("http://", "https://")):
            problems.append(f"fallback_rpc_url must be an http(s) URL, got {self.fallback_rpc_url!r}")

        for name in ("base_mint", "quote_mint", "tip_account", "authorization_account"):
            value = getattr(self, name)
            if value is None and name == "authorization_account":
                continue
            try:
                Pubkey.from_string(value)
            except Exception:
                problems.append(f"{name} is not a valid base58 public key: {value!r}")

        if self.base_mint == self.quote_mint:
            problems.append("base_mint and quote_mint must differ")
        if self.probe_amount_lamports <= 0:
            problems.append("probe_amount_lamports must be > 0")
        if self.profit_threshold_lamports < 1:
            problems.append("profit_threshold_lamports must be >= 1 (a smaller threshold allows a zero tip)")
        if self.authorization_reserve_lamports < 0:
            problems.append("authorization_reserve_lamports must be >= 0")
        if self.slippage_bps < 0:
            problems.append("slippage_bps must be >= 0")
        if self.max_accounts <= 0:
            problems.append("max_accounts must be > 0")
        if self.compute_unit_price_micro_lamports < 0:
            problems.append("compute_unit_price_micro_lamports must be >= 0")
        for name in ("request_timeout_seconds", "confirm_timeout_seconds"):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be > 0")
        for name in ("loop_interval_seconds", "failure_backoff_seconds", "max_backoff_seconds",
                     "jupiter_requests_per_second"):
            if getattr(self, name) < 0:
                problems.append(f"{name} must be >= 0")
        if self.mode not in ("scan", "live"):
            problems.append(f"mode must be 'scan' or 'live', got {self.mode!r}")

        if problems:
            raise ConfigError("Invalid configuration: " + "; ".join(problems))


# Environment variable -> BotConfig field
ENV_FIELDS = {
    "RPC_URL": "rpc_url",
    "FALLBACK_RPC_URL": "fallback_rpc_url",
    "JUPITER_API_URL": "jupiter_api_url",
    "JUPITER_API_KEY": "jupiter_api_key",
    "JITO_RPC_URL": "jito_rpc_url",
    "BASE_MINT": "base_mint",
    "QUOTE_MINT": "quote_mint",
    "TIP_ACCOUNT": "tip_account",
    "AUTHORIZATION_ACCOUNT": "authorization_account",
    "AUTHORIZATION_RESERVE_LAMPORTS": "authorization_reserve_lamports",
    "PROFIT_THRESHOLD_LAMPORTS": "profit_threshold_lamports",
    "PROBE_AMOUNT_LAMPORTS": "probe_amount_lamports",
    "SLIPPAGE_BPS": "slippage_bps",
    "MAX_ACCOUNTS": "max_accounts",
    "ONLY_DIRECT_ROUTES": "only_direct_routes",
    "COMPUTE_UNIT_PRICE_MICRO_LAMPORTS": "compute_unit_price_micro_lamports",
    "REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
    "CONFIRM_TIMEOUT_SECONDS": "confirm_timeout_seconds",
    "LOOP_INTERVAL_SECONDS": "loop_interval_seconds",
    "FAILURE_BACKOFF_SECONDS": "failure_backoff_seconds",
    "MAX_BACKOFF_SECONDS": "max_backoff_seconds",
    "JUPITER_REQUESTS_PER_SECOND": "jupiter_requests_per_second",
    "MODE": "mode",
}


def _coerce(field_name: str, field_type: type, raw: Any) -> Any:
    """Convert a raw env/json value to the type of the BotConfig field."""
    try:
        if field_type is bool:
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in ("1", "true", "yes", "on")
        if field_type is int:
            if isinstance(raw, bool):
                raise ValueError("boolean is not an integer")
            return int(str(raw).strip())
        if field_type is float:
            return float(str(raw).strip())
    except ValueError as e:
        raise ConfigError(f"Invalid value for {field_name}: {raw!r} ({e})") from e
    value = str(raw).strip()
    return value or None


def build_config(overrides: Mapping[str, Any]) -> BotConfig:
    """Build a BotConfig from field-name -> raw value overrides."""
    types = {f.name: f.type for f in fields(BotConfig)}
    kwargs: Dict[str, Any] = {}
    for name, raw in overrides.items():
        if name not in types:
            logger.warning(f"Ignoring unknown config key: {name}")
            continue
        if raw is None:
            continue
        field_type = types[name]
        if field_type not in (int, float, bool):
            field_type = str  # str and Optional[str]
        kwargs[name] = _coerce(name, field_type, raw)
    if kwargs.get("mode"):
        kwargs["mode"] = kwargs["mode"].lower()
    return BotConfig(**kwargs)


def load_config(
    env_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BotConfig:
    """Load configuration from .env, config.json and the environment, then validate it."""
    env_path = env_path or PROJECT_ROOT / '.env'
    config_path = config_path or PROJECT_ROOT / 'config.json'

    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.warning(f".env file not found at {env_path}")

    overrides: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                file_config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"config.json is not valid JSON: {e}") from e
        overrides.update(file_config.get('arbitrage', {}))
    else:
        logger.debug(f"config.json not found at {config_path}, using defaults")

    environ = os.environ if environ is None else environ
    for env_name, field_name in ENV_FIELDS.items():
        value = environ.get(env_name)
        if value is not None and value.strip() != "":
            overrides[field_name] = value

    config = build_config(overrides)
    config.validate()
    return config


def load_wallet(private_key_str: Optional[str] = None) -> Keypair:
    """Load the signer keypair from a base58 private key (PRIVATE_KEY env var by default)."""
    if not private_key_str:
        private_key_str = os.getenv('PRIVATE_KEY')

    if not private_key_str:
        raise ConfigError("PRIVATE_KEY must be set")

    try:
        key_bytes = base58.b58decode(private_key_str.strip())
    except ValueError as e:
        raise ConfigError(f"Failed to decode private key: {e}") from e

    try:
        return Keypair.from_bytes(key_bytes)
    except Exception as e:
        # Never include the key material in the message
        raise ConfigError(f"Failed to create keypair from {len(key_bytes)} decoded bytes") from e
