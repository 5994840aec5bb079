"""Seed the database with demo users and a system-default configuration per blueprint.

Idempotent: existing users and system defaults are left untouched.
Run via: python -m querygate.seed
"""

import asyncio
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from querygate.blueprints import register_all
from querygate.core.cache import close_redis, get_redis
from querygate.core.exceptions import DuplicateConfigError
from querygate.core.security import create_access_token
from querygate.database import async_session_factory, engine
from querygate.models.enums import UserRole
from querygate.models.user import User
from querygate.services.blueprint import Blueprint, registry
from querygate.services.config_resolver import ConfigResolver
from querygate.services.query_config import QueryConfigService

SEED_USERS = [
    ("admin@querygate.local", "System Administrator", UserRole.ADMIN),
    ("analyst@querygate.local", "Data Analyst", UserRole.ANALYST),
    ("viewer@querygate.local", "Read-only Viewer", UserRole.VIEWER),
]


def default_policy(blueprint: Blueprint) -> dict:
    """The narrowing policy that reproduces the blueprint as registered."""
    described = blueprint.to_dict()
    return {
        "selectable_fields": described["selectable_fields"],
        "sortable_fields": described["sortable_fields"],
        "default_sort": described["default_sort"],
    }


async def seed_users(session: AsyncSession) -> dict[str, uuid.UUID]:
    """Create demo users. Returns {email: user_id} mapping."""
    users: dict[str, uuid.UUID] = {}
    for email, name, role in SEED_USERS:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(id=uuid.uuid4(), email=email, full_name=name, role=role, is_active=True)
            session.add(user)
            print(f"  [users] Created {email} ({role.value})")
        else:
            print(f"  [users] {email} already exists")
        users[email] = user.id
    await session.commit()
    return users


async def seed_system_defaults(session: AsyncSession, admin_id: uuid.UUID) -> int:
    """Write one system-default configuration per registered blueprint."""
    svc = QueryConfigService(session, ConfigResolver(session, get_redis()))
    created = 0
    for blueprint in registry:
        try:
            await svc.create(
                key=blueprint.name,
                value=default_policy(blueprint),
                user_id=None,
                actor_id=admin_id,
            )
        except DuplicateConfigError:
            print(f"  [configs] {blueprint.name} already has a system default, skipping.")
            continue
        created += 1
        print(f"  [configs] Seeded system default for {blueprint.name}")
    return created


async def run_seed() -> None:
    register_all(registry)
    registry.freeze()

    print("=" * 60)
    print("querygate seed")
    print("=" * 60)

    try:
        async with async_session_factory() as session:
            print("\n[1/2] Seeding users...")
            users = await seed_users(session)
            admin_id = users[SEED_USERS[0][0]]

            print("\n[2/2] Seeding system-default query configurations...")
            created = await seed_system_defaults(session, admin_id)
    finally:
        await close_redis()
        await engine.dispose()

    print("\n" + "=" * 60)
    print(f"Seed complete! {created} system default(s) created.")
    print("=" * 60)
    print("\nDemo tokens:")
    for email, _name, role in SEED_USERS:
        print(f"  {email:28s} ({role.value})\n    {create_access_token(users[email])}")


if __name__ == "__main__":
    asyncio.run(run_seed())
