"""
Exception hierarchy for the scanner core.
"""


class PolyscanError(Exception):
    """Base exception for all scanner errors."""

    pass


class TransientNetworkError(PolyscanError):
    """Network call failed in a way that may succeed on retry."""

    pass


class TransientFetchError(TransientNetworkError):
    """Market catalog could not be fetched after bounded retries."""

    pass


class ParseError(PolyscanError):
    """A single record from the exchange could not be parsed."""

    pass


class ExecutionError(PolyscanError):
    """Execution collaborator failed for a dispatched task."""

    pass


class ReconnectExhausted(PolyscanError):
    """Realtime monitor gave up reconnecting."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Reconnect attempts exhausted after {attempts} tries")
