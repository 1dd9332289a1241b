from __future__ import annotations

import asyncio
from time import perf_counter
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine


async def _probe(engine: AsyncEngine, with_accounts: bool) -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
        if with_accounts:
            await conn.execute(text("SELECT 1 FROM accounts LIMIT 1"))


async def check_db(
    engine: AsyncEngine,
    *,
    with_accounts: bool = False,
    timeout: float = 5.0,
) -> dict[str, Any]:
    """
    Round-trip the database. With `with_accounts`, also confirm the accounts
    table is reachable, so a missing migration shows up as unhealthy.
    """
    t0 = perf_counter()
    error: str | None = None
    try:
        await asyncio.wait_for(_probe(engine, with_accounts), timeout=timeout)
    except asyncio.TimeoutError:
        error = f"timed out after {timeout}s"
    except (SQLAlchemyError, OSError) as e:
        error = str(e)
    dt_ms = (perf_counter() - t0) * 1000.0
    return {"ok": error is None, "latency_ms": round(dt_ms, 2), "error": error}
