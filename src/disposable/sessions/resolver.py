from typing import Optional

from disposable.sessions.models import Endpoint, SessionState
from disposable.sessions.registry import SessionRegistry


class EndpointResolver:
    """Read-only session id -> endpoint lookup for the reverse proxy.

    None means "unroutable": unknown, expired, being reclaimed, or no
    endpoint was ever published. There is no fallback target.
    """

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def resolve(self, session_id: str) -> Optional[Endpoint]:
        session = self.registry.get(session_id)
        if session is None or session.state is SessionState.RECLAIMING:
            return None
        if not session.is_active(self.registry.clock()):
            return None
        return session.endpoint
