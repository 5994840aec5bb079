"""Named, user-overridable query configuration records."""

import uuid

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from querygate.models.base import BaseModel, JSONType


class QueryConfig(BaseModel):
    __tablename__ = "query_config"

    key: Mapped[str] = mapped_column(String(200), nullable=False)
    value: Mapped[dict] = mapped_column(JSONType, nullable=False)
    # NULL marks the system default for the key.
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("user.id"), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("key", "user_id", name="uq_query_config_key_user"),
        # NULLs never collide under the composite constraint, so system
        # defaults need their own partial index.
        Index(
            "uq_query_config_key_system",
            "key",
            unique=True,
            postgresql_where=text("user_id IS NULL"),
            sqlite_where=text("user_id IS NULL"),
        ),
        Index("ix_query_config_key", "key"),
    )

    @property
    def is_system_default(self) -> bool:
        return self.user_id is None
