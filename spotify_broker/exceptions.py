"""
Error taxonomy for the broker. Routes map these to redirects or JSON responses;
none of them should take the process down except ConfigError at startup.
"""


class BrokerError(Exception):
    """Base class for broker errors."""


class ConfigError(BrokerError):
    """Missing or invalid configuration at startup. Fatal."""


class StateMismatch(BrokerError):
    """Callback state absent or different from the one issued at login."""


class ExchangeFailed(BrokerError):
    """Token endpoint rejected a code or refresh exchange, or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, error: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class AuthRequired(BrokerError):
    """No usable token pair; the user has to log in again."""


class UpstreamFailure(BrokerError):
    """Spotify Web API call failed after a valid token was attached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StoreUnavailable(BrokerError):
    """Persistence layer unreachable. Caught and logged at the token store boundary, never raised to request handlers."""
