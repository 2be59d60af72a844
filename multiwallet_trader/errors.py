"""
Error kinds raised by the trading engine.
"""
from typing import List, Optional


class TraderError(Exception):
    """Base class for all engine errors."""


class ConfigError(TraderError, ValueError):
    """Missing or malformed configuration (seed phrase, numeric settings)."""


class ValidationError(TraderError, ValueError):
    """Invalid operator input, rejected before any network call."""


class VenueUnavailable(TraderError):
    """A liquidity venue cannot serve this trade (curve missing/complete, no route, retries exhausted)."""


class TransportError(TraderError):
    """RPC, relay or HTTP failure.

    Carries the simulation log lines when the node returned them with a
    preflight failure.
    """

    def __init__(self, message: str, logs: Optional[List[str]] = None):
        super().__init__(message)
        self.logs = list(logs or [])
