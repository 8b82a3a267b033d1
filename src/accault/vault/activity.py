# Vault - Per-user activity history
#
# Every mutation leaves one line in activity_logs ("Delete 3 Accounts",
# "Failed Create Group", ...) and a matching structured audit event.

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from ..core.audit_log import ActivityAction, EventType, get_audit_logger
from ..core.errors import StoreError
from .store import Eq, OrderBy, VaultStore

logger = logging.getLogger(__name__)


class ActivityLog:
    """Records and reads the activity history of a user."""

    def __init__(self, store: VaultStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.audit = get_audit_logger()

    def record(
        self,
        user_id: str,
        action: ActivityAction,
        entity: str,
        details: str,
        event_type: EventType,
        failed: bool = False,
    ) -> None:
        """Write the activity row. A failing write is logged, not raised:
        the mutation it describes has already been committed."""
        self.audit.log_activity(user_id, action, entity, details, event_type, failed=failed)
        try:
            self.store.insert(
                "activity_logs",
                {
                    "id": str(uuid.uuid4()),
                    "user_id": user_id,
                    "action": action.value,
                    "entity": entity,
                    "details": details,
                    "created_at": self.clock().isoformat(),
                },
            )
        except StoreError as exc:
            logger.error("Could not record activity for %s: %r", user_id, exc.__cause__)

    def recent(self, user_id: str, limit: int = 50) -> List[Dict]:
        return self.store.find(
            "activity_logs",
            [Eq("user_id", user_id)],
            [OrderBy("seq", descending=True)],
            limit=limit,
            columns=("id", "action", "entity", "details", "created_at"),
        )
