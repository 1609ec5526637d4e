from typing import Optional

from fastapi import WebSocket

from constants import MAX_IDENTITY_LENGTH
from logging_config import get_logger

logger = get_logger(__name__)

IDENTITY_HEADER = "x-user-identity"
IDENTITY_QUERY_PARAM = "identity"


class ProxyIdentityProvider:
    """Reads the verified user identity that the authenticating proxy attached.

    The header wins over the query parameter; browsers cannot set headers on
    a WebSocket handshake, so the proxy may rewrite the query string instead.
    """

    def resolve(self, websocket: WebSocket) -> Optional[str]:
        identity = websocket.headers.get(IDENTITY_HEADER) or websocket.query_params.get(IDENTITY_QUERY_PARAM)
        if not identity or not identity.strip():
            return None
        identity = identity.strip()
        if len(identity) > MAX_IDENTITY_LENGTH:
            logger.warning(f"Rejecting identity longer than {MAX_IDENTITY_LENGTH} characters")
            return None
        return identity
