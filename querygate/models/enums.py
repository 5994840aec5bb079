"""Enum types for the querygate data model."""

import enum


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    ANALYST = "analyst"
    VIEWER = "viewer"


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# --- Catalog Enums (used by the declared blueprints) ---

class FontType(str, enum.Enum):
    FREE = "free"
    VIP = "vip"
    PAID = "paid"


class CollectionType(str, enum.Enum):
    FREE = "free"
    VIP = "vip"
    PAID = "paid"
