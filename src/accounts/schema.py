from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    func,
)
from sqlalchemy.ext.asyncio import AsyncEngine

metadata = MetaData()

# Constraint names are matched when classifying duplicate-key errors.
UQ_CHAT_ID = "uq_accounts_chat_id"
UQ_GAME_IDENTITY = "uq_accounts_game_identity"

accounts = Table(
    "accounts",
    metadata,
    Column(
        "id",
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    ),
    Column("chat_id", BigInteger, nullable=False),
    Column("game_identity", String(36), nullable=False),
    Column("game_display_name", String(64), nullable=False),
    Column("linked_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("chat_id", name=UQ_CHAT_ID),
    UniqueConstraint("game_identity", name=UQ_GAME_IDENTITY),
)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
