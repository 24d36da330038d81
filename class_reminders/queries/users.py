"""Database queries for users (the identity directory)."""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..database import get_connection
from ..errors import StoreUnavailable
from ..tables import users
from ..types import Identity


async def get_user(conn: AsyncConnection, user_id: str) -> dict | None:
    """Get a single user by ID."""
    result = await conn.execute(select(users).where(users.c.user_id == user_id))
    row = result.mappings().first()
    return dict(row) if row else None


class SqlIdentityDirectory:
    """Identity directory backed by the users table."""

    def __init__(self, connection_factory=get_connection):
        self._connect = connection_factory

    async def resolve_identity(self, identity_id: str) -> Identity | None:
        try:
            async with self._connect() as conn:
                row = await get_user(conn, identity_id)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"Identity directory unavailable: {e}") from e

        if row is None:
            return None
        return Identity(
            identity_id=row["user_id"],
            name=row.get("name") or "",
            phone=row.get("phone_number"),
            email=row.get("email"),
        )
