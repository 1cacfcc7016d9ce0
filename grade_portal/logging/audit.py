from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from grade_portal.models.session import AdminSession

"""Admin action audit lines.

Every mutating operation (bulk import, resets) writes one INFO line through
the application logger:

    INFO audit {"admin_code": ..., "table_name": ..., "operation": ..., ...}
"""

logger = logging.getLogger(__name__)


def log_admin_action(
    session: AdminSession,
    table_name: str,
    operation: str,
    changed_data: dict[str, Any] | None = None,
) -> None:
    payload = {
        "admin_code": session.admin_code,
        "table_name": table_name,
        "operation": operation,
        "changed_data": changed_data or {},
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
    }
    logger.info("audit %s", json.dumps(payload, ensure_ascii=False, default=str))
