from __future__ import annotations

import logging

from sqlalchemy import DateTime, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import AlreadyLinkedChatId, AlreadyLinkedGameIdentity, StorageError
from .models import Account, GameIdentity
from .schema import UQ_CHAT_ID, UQ_GAME_IDENTITY

logger = logging.getLogger(__name__)


def _violated_constraint(err: IntegrityError) -> str | None:
    """
    Work out which unique constraint a duplicate-key error refers to.

    MySQL reports the constraint name ("Duplicate entry ... for key
    'accounts.uq_accounts_chat_id'"), SQLite the column
    ("UNIQUE constraint failed: accounts.chat_id").
    """
    msg = str(getattr(err, "orig", None) or err)
    if UQ_GAME_IDENTITY in msg or "accounts.game_identity" in msg:
        return "game_identity"
    if UQ_CHAT_ID in msg or "accounts.chat_id" in msg:
        return "chat_id"
    return None


async def _select_by_chat_id(session: AsyncSession, chat_id: int) -> Account | None:
    sql = text(
        """
        SELECT chat_id, game_identity, game_display_name, linked_at
        FROM accounts
        WHERE chat_id = :cid
        LIMIT 1
        """
    ).columns(linked_at=DateTime)
    row = (await session.execute(sql, {"cid": chat_id})).mappings().first()
    if not row:
        return None
    return Account(
        chat_id=int(row["chat_id"]),
        game_identity=row["game_identity"],
        game_display_name=row["game_display_name"],
        linked_at=row["linked_at"],
    )


class AccountStore:
    """
    Durable Telegram-user → Minecraft-profile links.

    Both uniqueness rules (one link per chat_id, one per game identity) are
    enforced by the database's unique constraints, so a link attempt is a
    single INSERT with no check-then-write window.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def link(self, chat_id: int, identity: GameIdentity) -> Account:
        sql = text(
            """
            INSERT INTO accounts (chat_id, game_identity, game_display_name)
            VALUES (:cid, :gid, :gname)
            """
        )
        params = {
            "cid": chat_id,
            "gid": identity.canonical_id,
            "gname": identity.display_name,
        }
        async with self._sessionmaker() as session:
            try:
                await session.execute(sql, params)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                which = _violated_constraint(e)
                if which is None:
                    # Unrecognised driver message; the chat_id row decides it.
                    try:
                        existing = await _select_by_chat_id(session, chat_id)
                    except SQLAlchemyError as lookup_err:
                        raise StorageError(str(lookup_err)) from e
                    which = "chat_id" if existing is not None else "game_identity"
                if which == "chat_id":
                    raise AlreadyLinkedChatId(chat_id) from e
                raise AlreadyLinkedGameIdentity(identity.canonical_id) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageError(str(e)) from e

            try:
                account = await _select_by_chat_id(session, chat_id)
            except SQLAlchemyError as e:
                raise StorageError(str(e)) from e

        logger.info(
            "Linked chat_id=%s to %s (%s)", chat_id, identity.display_name, identity.canonical_id
        )
        return account or Account(chat_id, identity.canonical_id, identity.display_name)

    async def lookup_by_chat_id(self, chat_id: int) -> Account | None:
        async with self._sessionmaker() as session:
            try:
                return await _select_by_chat_id(session, chat_id)
            except SQLAlchemyError as e:
                raise StorageError(str(e)) from e

    async def unlink(self, chat_id: int) -> bool:
        """Delete the link for `chat_id`. Returns True iff a row was removed."""
        sql = text("DELETE FROM accounts WHERE chat_id = :cid")
        async with self._sessionmaker() as session:
            try:
                result = await session.execute(sql, {"cid": chat_id})
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageError(str(e)) from e

        removed = int(getattr(result, "rowcount", 0) or 0) > 0
        if removed:
            logger.info("Removed account link for chat_id=%s", chat_id)
        return removed
