"""All querygate database models.

Import all models here so Alembic and SQLAlchemy can discover them.
"""

from querygate.models.base import Base, BaseModel  # noqa: F401

# User & Audit
from querygate.models.user import AuditLog, User  # noqa: F401

# Query configuration
from querygate.models.query_config import QueryConfig  # noqa: F401
