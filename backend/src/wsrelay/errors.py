from typing import Optional


class RelayError(Exception):
    """Base class for every error raised by the relay."""


class EncodingError(RelayError):
    """A subscription record could not be serialized."""


class DecodingError(RelayError):
    """A page read back from storage could not be parsed into records."""


class StoreUnavailable(RelayError):
    """Transport or throttling failure talking to the subscription store."""


class BackoffExhausted(RelayError):
    """A bounded retry loop ran out of attempts while work remained."""

    def __init__(self, max_attempts: int):
        super().__init__(f"backoff: max attempts reached ({max_attempts})")
        self.max_attempts = max_attempts


class DeliveryError(RelayError):
    """A push to a single connection failed.

    Never leaves the dispatcher; it only decides a message's outcome.
    """

    def __init__(self, connection_id: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.connection_id = connection_id
        self.status_code = status_code

    @property
    def gone(self) -> bool:
        # 410 means the connection is no longer live
        return self.status_code == 410
