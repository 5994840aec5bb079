"""QueryConfig write path: CRUD with audit logging and cache invalidation.

Every mutation commits first and then evicts the affected cache slot before
returning, which bounds staleness to the gap between commit and eviction.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from querygate.core.exceptions import DuplicateConfigError, NotFoundError
from querygate.models.enums import AuditAction
from querygate.models.query_config import QueryConfig
from querygate.services.audit import AuditService
from querygate.services.config_resolver import ConfigResolver

logger = logging.getLogger(__name__)

ENTITY_TYPE = "query_config"

# SQLSTATE for unique_violation.
UNIQUE_VIOLATION = "23505"


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when the integrity error came from a unique constraint or index."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION
    # SQLite reports the constraint kind only in the message.
    return "UNIQUE constraint failed" in str(orig)


class QueryConfigService:
    def __init__(self, db: AsyncSession, resolver: ConfigResolver) -> None:
        self.db = db
        self.resolver = resolver
        self.audit = AuditService(db)

    async def get(self, config_id: uuid.UUID) -> QueryConfig:
        config = await self.db.get(QueryConfig, config_id)
        if config is None:
            raise NotFoundError(f"Configuration {config_id} not found.", id=str(config_id))
        return config

    async def list_configs(
        self,
        *,
        key: str | None = None,
        user_ids: list[uuid.UUID | None] | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> tuple[list[QueryConfig], int]:
        """List configurations, optionally filtered by key and owners.

        ``user_ids`` may contain None to include system defaults.
        Returns (rows, total_count).
        """
        query = select(QueryConfig)
        if key is not None:
            query = query.where(QueryConfig.key == key)
        if user_ids is not None:
            owners = [u for u in user_ids if u is not None]
            conditions = []
            if owners:
                conditions.append(QueryConfig.user_id.in_(owners))
            if None in user_ids:
                conditions.append(QueryConfig.user_id.is_(None))
            if not conditions:
                return [], 0
            query = query.where(or_(*conditions))

        count_q = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_q)).scalar_one()

        query = query.order_by(QueryConfig.key, QueryConfig.created_at)
        query = query.offset((page - 1) * per_page).limit(per_page)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def create(
        self,
        *,
        key: str,
        value: dict,
        user_id: uuid.UUID | None,
        actor_id: uuid.UUID | None,
    ) -> QueryConfig:
        """Create a configuration for a user, or the system default when user_id is None.

        Raises DuplicateConfigError if the (key, user) slot is taken,
        including when a concurrent insert wins the race.
        """
        existing = await self.db.execute(
            select(QueryConfig.id).where(
                QueryConfig.key == key,
                QueryConfig.user_id.is_(None) if user_id is None else QueryConfig.user_id == user_id,
            )
        )
        if existing.first() is not None:
            raise self._duplicate(key, user_id)

        config = QueryConfig(id=uuid.uuid4(), key=key, value=value, user_id=user_id)
        self.db.add(config)
        self.audit.log(
            user_id=actor_id,
            action=AuditAction.CREATE,
            entity_type=ENTITY_TYPE,
            entity_id=config.id,
            new_values={"key": key, "user_id": str(user_id) if user_id else None, "value": value},
        )
        try:
            await self.db.commit()
        except IntegrityError as exc:
            await self.db.rollback()
            if not is_unique_violation(exc):
                raise
            logger.info("Lost race creating config %s for %s", key, user_id or "system")
            raise self._duplicate(key, user_id)
        await self.db.refresh(config)

        await self._invalidate(key, user_id)
        return config

    async def update(
        self,
        config_id: uuid.UUID,
        *,
        value: dict,
        actor_id: uuid.UUID | None,
    ) -> QueryConfig:
        """Replace a configuration's value in place."""
        config = await self.get(config_id)
        old_value = config.value
        config.value = value
        config.updated_at = datetime.now(timezone.utc)
        self.audit.log(
            user_id=actor_id,
            action=AuditAction.UPDATE,
            entity_type=ENTITY_TYPE,
            entity_id=config.id,
            old_values={"value": old_value},
            new_values={"value": value},
        )
        await self.db.commit()

        await self._invalidate(config.key, config.user_id)
        return config

    async def delete(self, config_id: uuid.UUID, *, actor_id: uuid.UUID | None) -> None:
        config = await self.get(config_id)
        key, user_id = config.key, config.user_id
        self.audit.log(
            user_id=actor_id,
            action=AuditAction.DELETE,
            entity_type=ENTITY_TYPE,
            entity_id=config.id,
            old_values={"key": key, "value": config.value},
        )
        await self.db.delete(config)
        await self.db.commit()

        await self._invalidate(key, user_id)

    async def _invalidate(self, key: str, user_id: uuid.UUID | None) -> None:
        await self.resolver.invalidate(key, user_id)
        if user_id is None:
            logger.info("System default for %s changed; cache slot evicted", key)

    @staticmethod
    def _duplicate(key: str, user_id: uuid.UUID | None) -> DuplicateConfigError:
        owner = "the system" if user_id is None else "this user"
        return DuplicateConfigError(
            f"Configuration with key '{key}' already exists for {owner}.",
            key=key,
        )
