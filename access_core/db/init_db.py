import asyncio

from access_core.db.session import session_scope
from access_core.services.accounts import ensure_default_role_permissions


async def init_db() -> None:
    """Seed capability rows for the built-in roles; accounts are created through setup."""
    async with session_scope() as session:
        await ensure_default_role_permissions(session)


if __name__ == "__main__":
    asyncio.run(init_db())
