from __future__ import annotations


class PerpDeskError(Exception):
    """Base class for all engine errors."""


class AuthError(PerpDeskError):
    """Credential or signature failure. Fatal: loops must not start."""


class ConfigError(PerpDeskError):
    """Invalid configuration values. Fatal at load time."""


class OrderError(PerpDeskError):
    """Order placement or cancellation failed."""

    def __init__(self, message: str, symbol: str | None = None) -> None:
        super().__init__(message)
        self.symbol = symbol


class InsufficientFundsError(OrderError):
    """Order rejected for lack of margin."""


class TransientNetworkError(PerpDeskError):
    """Timeout or connectivity problem; retried on the next scheduled cycle."""


FATAL_ERRORS = (AuthError, ConfigError)
