from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from accounts.errors import StorageError
from accounts.repository import AccountStore
from core.db import Database
from linking.workflow import ReconciliationWorkflow


def require_admin(
    request: Request,
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    expected = getattr(request.app.state.config, "admin_token", None)
    if expected and x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


router = APIRouter(dependencies=[Depends(require_admin)])


class AccountOut(BaseModel):
    chat_id: int
    game_identity: str
    game_display_name: str
    linked_at: datetime | None = None


class UnlinkOut(BaseModel):
    chat_id: int
    status: str
    removed_name: str | None = None
    recovered: bool = False


def get_store(request: Request) -> AccountStore:
    db: Database = request.app.state.db
    return AccountStore(db.sessionmaker)


def get_workflow(request: Request) -> ReconciliationWorkflow:
    return request.app.state.workflow


@router.get("/accounts/{chat_id}", response_model=AccountOut)
async def get_account(
    chat_id: int,
    store: Annotated[AccountStore, Depends(get_store)],
):
    try:
        account = await store.lookup_by_chat_id(chat_id)
    except StorageError as e:
        raise HTTPException(status_code=503, detail="Storage unavailable") from e
    if account is None:
        raise HTTPException(status_code=404, detail="No linked account")
    return AccountOut(
        chat_id=account.chat_id,
        game_identity=account.game_identity,
        game_display_name=account.game_display_name,
        linked_at=account.linked_at,
    )


@router.post("/accounts/{chat_id}/unlink", response_model=UnlinkOut)
async def unlink_account(
    chat_id: int,
    workflow: Annotated[ReconciliationWorkflow, Depends(get_workflow)],
):
    """
    Run the same unlink as the chat command: remove from every server first,
    then drop the row. A failed removal leaves the row in place.
    """
    result = await workflow.unlink(chat_id)
    return UnlinkOut(
        chat_id=chat_id,
        status=result.status.value,
        removed_name=result.removed_name,
        recovered=result.recovered,
    )
