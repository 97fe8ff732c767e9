from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from ..errors import DeliveryError
from ..utilities.logging_config import get_logger

logger = get_logger(__name__)


class PushChannel(Protocol):
    def post_to_connection(self, connection_id: str, data: bytes) -> None:
        """Deliver ``data`` to one live connection or raise ``DeliveryError``."""


class HttpPushChannel:
    """Posts raw payloads to ``<endpoint>/@connections/<connection id>``.

    A 410 answer means the connection is gone; any other error status or
    transport failure is reported the same way, as ``DeliveryError``.
    """

    def __init__(self, endpoint: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.endpoint = endpoint.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def post_to_connection(self, connection_id: str, data: bytes) -> None:
        url = f"{self.endpoint}/@connections/{quote(connection_id, safe='')}"
        try:
            response = self.client.post(url, content=data)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                connection_id, f"push rejected with HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.RequestError as e:
            raise DeliveryError(connection_id, f"push request failed: {e}") from e

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
