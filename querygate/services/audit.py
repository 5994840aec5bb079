"""Audit logging for configuration mutations."""

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from querygate.models.enums import AuditAction
from querygate.models.user import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Service for creating structured audit log entries."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def log(
        self,
        *,
        user_id: uuid.UUID | None,
        action: AuditAction,
        entity_type: str,
        entity_id: uuid.UUID | None = None,
        old_values: dict | None = None,
        new_values: dict | None = None,
    ) -> AuditLog:
        """Add an audit log entry to the current unit of work.

        Args:
            user_id: The user who performed the action (None for system actions).
            action: The type of action (CREATE, UPDATE, DELETE).
            entity_type: The type of entity affected (e.g. "query_config").
            entity_id: The UUID of the affected entity.
            old_values: Previous values before mutation (for UPDATE/DELETE).
            new_values: New values after mutation (for CREATE/UPDATE).
        """
        entry = AuditLog(
            id=uuid.uuid4(),
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_values=old_values,
            new_values=new_values,
        )
        self.db.add(entry)

        logger.info(
            "AUDIT: user=%s action=%s entity=%s/%s",
            user_id,
            action.value,
            entity_type,
            entity_id,
        )
        return entry
