from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from telegram import Update
from telegram.error import InvalidToken, RetryAfter, TelegramError
from telegram.ext import Application, ApplicationBuilder

from accounts.repository import AccountStore
from accounts.schema import create_schema
from api.admin import router as admin_router
from api.health import router as health_router
from core.config import AppConfig, ServerTarget, load_server_targets
from core.db import Database, init_db
from health.db import check_db
from identity.resolver import IdentityResolver
from linking.workflow import ReconciliationWorkflow
from whitelist.fleet import WhitelistFleetCoordinator
from whitelist.rcon import RemoteWhitelistClient

ALLOWED_UPDATES = ["message", "chat_member"]


def _plausible_token(token: str) -> bool:
    if not token:
        return False
    up = token.upper()
    if "REPLACE_WITH_YOUR_REAL" in up or up.startswith("REPLACE"):
        return False
    return bool(re.fullmatch(r"\d+:[A-Za-z0-9_-]{30,}", token))


def _norm_updates(upds: Iterable[str] | None) -> list[str]:
    return sorted(set((up or "").strip() for up in (upds or []) if (up or "").strip()))


async def _ensure_webhook(
    application: Application,
    target_url: str,
    secret_token: str | None,
    allowed_updates: list[str],
    log: logging.Logger,
    max_retries: int = 5,
) -> bool:
    """
    Ensure the bot webhook is configured exactly as desired.

    Always resets when a secret token is configured: getWebhookInfo does not
    expose the secret, so a matching URL says nothing about it.
    `chat_member` must be in allowed_updates or departures are never delivered.
    """
    want_allowed = _norm_updates(allowed_updates)

    needs_set = True
    try:
        info = await application.bot.get_webhook_info()
        current_url = getattr(info, "url", "") or ""
        have_allowed = _norm_updates(getattr(info, "allowed_updates", None))

        if current_url == target_url and want_allowed == have_allowed and not secret_token:
            needs_set = False
            log.info(
                "Webhook already configured: %s (allowed=%s, pending=%s).",
                target_url,
                have_allowed or "[]",
                getattr(info, "pending_update_count", 0),
            )
    except TelegramError as e:
        log.warning("Failed to fetch current webhook info (%s); will set webhook.", e)

    if not needs_set:
        return True

    delay = 1.0
    for attempt in range(1, max_retries + 1):
        try:
            await application.bot.set_webhook(
                url=target_url,
                secret_token=secret_token,
                allowed_updates=allowed_updates,
                drop_pending_updates=False,
            )
            log.info("Webhook set to %s (allowed=%s)", target_url, want_allowed or "[]")
            return True
        except RetryAfter as e:
            wait_s = getattr(e, "retry_after", 1)
            log.warning(
                "Telegram rate limit on setWebhook (RetryAfter=%ss), attempt %s/%s; sleeping…",
                wait_s,
                attempt,
                max_retries,
            )
            await asyncio.sleep(max(1, int(wait_s)))
        except TelegramError as e:
            log.warning(
                "setWebhook failed (attempt %s/%s): %s; retrying in %.1fs…",
                attempt,
                max_retries,
                e,
                delay,
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, 30.0)

    log.error("Giving up on setting webhook after %s attempts.", max_retries)
    return False


def build_workflow(
    config: AppConfig,
    db: Database,
    http_client: httpx.AsyncClient,
    targets: Sequence[ServerTarget],
) -> ReconciliationWorkflow:
    resolver = IdentityResolver(
        http_client,
        profiles_url=config.mojang_profiles_url,
        history_url=config.mojang_history_url,
    )
    fleet = WhitelistFleetCoordinator(
        RemoteWhitelistClient(timeout=config.rcon_timeout_secs),
        max_attempts=config.whitelist_max_attempts,
        retry_delay=config.whitelist_retry_delay_secs,
    )
    return ReconciliationWorkflow(
        store=AccountStore(db.sessionmaker),
        resolver=resolver,
        fleet=fleet,
        targets=targets,
    )


def create_app(
    config: AppConfig,
    *,
    db: Database | None = None,
    targets: Sequence[ServerTarget] | None = None,
    workflow: ReconciliationWorkflow | None = None,
) -> FastAPI:
    if not config.public_base_url:
        raise RuntimeError("PUBLIC_BASE_URL is empty; set it in environment.")

    log = logging.getLogger("whitelist")

    if db is None:
        db = init_db(config.database_url)
    if targets is None:
        targets = load_server_targets(config.servers_file)
    if not targets:
        log.warning("No whitelist servers configured; links will not reach any server.")

    http_client = httpx.AsyncClient(
        timeout=config.identity_timeout_secs,
        headers={"Accept": "application/json"},
    )
    if workflow is None:
        workflow = build_workflow(config, db, http_client, targets)

    app = FastAPI(title="whitelist-telegram-bot")

    app.state.config = config
    app.state.db = db
    app.state.workflow = workflow
    app.state.bot_ready = False
    app.state.bot_error: str | None = None
    app.state.db_ok = False
    app.state.db_latency_ms = None
    app.state.server_count = len(workflow.targets)
    app.state.webhook_url = f"{config.public_base_url}/{config.webhook_secret_path.strip('/')}"

    application: Application | None = None
    if _plausible_token(config.bot_token):
        # Link/unlink can block for the whole retry budget; keep other users moving.
        application = (
            ApplicationBuilder().token(config.bot_token).concurrent_updates(True).build()
        )

        from tgbot.handlers import CONFIG_KEY, WORKFLOW_KEY, build_handlers, error_handler

        application.bot_data[CONFIG_KEY] = config
        application.bot_data[WORKFLOW_KEY] = workflow
        for h in build_handlers():
            application.add_handler(h)
        application.add_error_handler(error_handler)
    else:
        app.state.bot_error = "missing_or_placeholder_token"
        log.warning("Telegram token missing/placeholder; API-only mode.")
    if config.link_chat_id is None:
        log.warning("LINK_CHAT_ID is not set; /link and /unlink are disabled.")

    app.include_router(health_router, tags=["health"])
    app.include_router(admin_router, prefix="/admin", tags=["admin"])

    WEBHOOK_PATH = "/" + config.webhook_secret_path.strip("/")

    @app.on_event("startup")
    async def _on_startup():
        log.info("Starting up: DB check + Telegram webhook setup.")
        db_health = await check_db(db.engine)
        app.state.db_ok = bool(db_health.get("ok", False))
        app.state.db_latency_ms = db_health.get("latency_ms")
        if not app.state.db_ok:
            log.error("DB health FAILED: %s", db_health.get("error"))
            raise RuntimeError("DB health check failed")

        if config.db_create_schema:
            await create_schema(db.engine)
            log.info("Ensured accounts table exists.")
        table_health = await check_db(db.engine, with_accounts=True)
        if not table_health.get("ok"):
            log.error(
                "accounts table unavailable (%s); run migrations or set DB_CREATE_SCHEMA=true",
                table_health.get("error"),
            )
            raise RuntimeError("accounts table missing")

        if application is None:
            return
        try:
            await application.initialize()
            me = await application.bot.get_me()
            log.info("Bot authorized as @%s (id=%s)", me.username, me.id)

            webhook_ok = await _ensure_webhook(
                application=application,
                target_url=app.state.webhook_url,
                secret_token=config.webhook_secret_token,
                allowed_updates=ALLOWED_UPDATES,
                log=log,
            )
            if not webhook_ok:
                app.state.bot_error = "webhook_set_failed"
                log.error("Proceeding without Telegram webhook (API-only mode).")
                return

            await application.start()
            app.state.bot_ready = True
            app.state.bot_error = None
            log.info(
                "Webhook ready at %s; %s whitelist server(s) configured.",
                app.state.webhook_url,
                app.state.server_count,
            )
        except InvalidToken:
            app.state.bot_error = "invalid_token"
            log.warning("Telegram rejected token; API-only mode.")
        except Exception:
            app.state.bot_error = "init_failed"
            log.exception("Telegram initialization failed; API-only mode.")

    @app.on_event("shutdown")
    async def _on_shutdown():
        if application is not None and app.state.bot_ready:
            try:
                await application.stop()
                await application.shutdown()
            except TelegramError:
                log.exception("Error while stopping Telegram application")
        await http_client.aclose()
        await db.dispose()

    @app.post(WEBHOOK_PATH)
    async def telegram_webhook(
        request: Request,
        x_telegram_bot_api_secret_token: str | None = Header(default=None),
    ):
        if config.webhook_secret_token:
            if (
                not x_telegram_bot_api_secret_token
                or x_telegram_bot_api_secret_token != config.webhook_secret_token
            ):
                raise HTTPException(status_code=401, detail="Invalid webhook secret token")

        if not app.state.bot_ready or application is None:
            raise HTTPException(status_code=503, detail="Bot not ready (API-only mode)")

        data = await request.json()
        upd_type = next(iter(data.keys() - {"update_id"}), "unknown")
        logging.getLogger("whitelist.webhook").debug("Incoming update type: %s", upd_type)

        update = Update.de_json(data, application.bot)
        # Processed in the background: a link can take the full retry budget,
        # longer than Telegram waits for the webhook response.
        application.create_task(application.process_update(update), update=update)
        return {"ok": True}

    return app
