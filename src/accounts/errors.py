from __future__ import annotations


class AccountStoreError(Exception):
    pass


class AlreadyLinkedChatId(AccountStoreError):
    def __init__(self, chat_id: int) -> None:
        super().__init__(f"chat_id {chat_id} already has a linked account")
        self.chat_id = chat_id


class AlreadyLinkedGameIdentity(AccountStoreError):
    def __init__(self, game_identity: str) -> None:
        super().__init__(f"game identity {game_identity} is linked to another chat_id")
        self.game_identity = game_identity


class StorageError(AccountStoreError):
    """Unexpected database failure; the underlying exception is chained."""
