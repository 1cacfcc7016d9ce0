from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

"""Administrator session passed explicitly into mutating operations.

Login and token issuance happen elsewhere; the upload pipeline only needs to
know who is acting (for the audit line) and whether the session is still
alive.
"""

__all__ = [
    "AdminSession",
    "DEFAULT_SESSION_TTL",
]

DEFAULT_SESSION_TTL = timedelta(minutes=5)


@dataclass(frozen=True)
class AdminSession:
    admin_id: str
    admin_code: str
    admin_name: str
    token: str
    expires_at: datetime

    @staticmethod
    def start(
        admin_id: str,
        admin_code: str,
        admin_name: str,
        token: str,
        ttl: timedelta = DEFAULT_SESSION_TTL,
    ) -> AdminSession:
        return AdminSession(
            admin_id=admin_id,
            admin_code=admin_code,
            admin_name=admin_name,
            token=token,
            expires_at=datetime.now(UTC) + ttl,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        return self.expires_at <= now
