"""
Error taxonomy for the arbitrage bot.

Only ConfigError is fatal; everything else aborts the current iteration.
"""
from typing import Optional


class ArbBotError(Exception):
    """Base class for all bot errors."""


class ConfigError(ArbBotError):
    """Missing or invalid configuration (signer key, endpoints, constants)."""


class ServiceError(ArbBotError):
    """Network, HTTP or RPC failure, or a non-success response."""

    def __init__(self, message: str, step: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.step = step
        self.status_code = status_code


class ParseError(ServiceError):
    """Malformed field in a service response (e.g. non-integer amount)."""


class BuildError(ServiceError):
    """Transaction could not be compiled or exceeds the size limit."""


class SubmissionError(ArbBotError):
    """Relay or RPC rejected (or failed to confirm) a signed transaction."""

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature
