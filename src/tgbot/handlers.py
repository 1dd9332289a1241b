from __future__ import annotations

import html
import logging

from telegram import Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import Forbidden, TelegramError
from telegram.ext import ChatMemberHandler, CommandHandler, ContextTypes

from core.config import AppConfig
from core.textnorm import is_valid_player_name, sanitize_player_name
from i18n.messages import t
from linking.workflow import LinkStatus, ReconciliationWorkflow, UnlinkResult, UnlinkStatus

logger = logging.getLogger(__name__)

# Keys under which create_app() stores shared objects in Application.bot_data.
WORKFLOW_KEY = "workflow"
CONFIG_KEY = "config"

_PRESENT_STATUSES = ("member", "administrator", "creator")
_GONE_STATUSES = ("left", "kicked")


def build_handlers():
    return [
        ChatMemberHandler(on_chat_member_update, ChatMemberHandler.CHAT_MEMBER),
        CommandHandler(["link", "mclink"], cmd_link),
        CommandHandler("unlink", cmd_unlink),
    ]


def _config(context: ContextTypes.DEFAULT_TYPE) -> AppConfig:
    return context.bot_data[CONFIG_KEY]


def _workflow(context: ContextTypes.DEFAULT_TYPE) -> ReconciliationWorkflow:
    return context.bot_data[WORKFLOW_KEY]


def _status_value(member) -> str | None:
    status = getattr(member, "status", None)
    return getattr(status, "value", status)


def _is_present(member) -> bool:
    status = _status_value(member)
    if status == "restricted":
        return bool(getattr(member, "is_member", False))
    return status in _PRESENT_STATUSES


def _is_gone(member) -> bool:
    status = _status_value(member)
    if status == "restricted":
        return not getattr(member, "is_member", False)
    return status in _GONE_STATUSES


def _in_link_chat(update: Update, config: AppConfig) -> bool:
    chat = update.effective_chat
    return bool(chat and config.link_chat_id is not None and chat.id == config.link_chat_id)


async def _send_typing(context: ContextTypes.DEFAULT_TYPE, chat_id: int) -> None:
    try:
        await context.bot.send_chat_action(chat_id=chat_id, action=ChatAction.TYPING)
    except TelegramError as e:
        logger.debug("send_chat_action failed chat=%s: %s", chat_id, e)


async def _notify_linked(
    context: ContextTypes.DEFAULT_TYPE, user_id: int, name: str, lang: str
) -> None:
    try:
        await context.bot.send_message(
            chat_id=user_id,
            text=t(lang, "link.dm", name=html.escape(name)),
            parse_mode=ParseMode.HTML,
            disable_web_page_preview=True,
        )
    except Forbidden:
        logger.info("User %s has not started a private chat with the bot; DM skipped", user_id)
    except TelegramError:
        logger.exception("Failed to DM link confirmation to user_id=%s", user_id)


def unlink_message(result: UnlinkResult, lang: str) -> str:
    return t(lang, f"unlink.{result.status.value}")


async def cmd_link(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    /link <name>: only in the linking chat. Resolves the name, stores the link
    and whitelists it on every server.
    """
    config = _config(context)
    msg = update.effective_message
    user = update.effective_user
    if not msg or not user or not _in_link_chat(update, config):
        return
    lang = config.bot_language

    if not context.args:
        await msg.reply_text(t(lang, "link.usage"), parse_mode=ParseMode.HTML)
        return

    name = sanitize_player_name(context.args[0])
    if not is_valid_player_name(name):
        await msg.reply_text(t(lang, "link.name_not_found"))
        return

    await _send_typing(context, msg.chat_id)
    result = await _workflow(context).link(user.id, name)
    logger.info("link user_id=%s name=%r -> %s", user.id, name, result.status.value)

    if result.status is LinkStatus.DONE and result.identity is not None:
        linked_name = result.identity.display_name
        await msg.reply_text(
            t(lang, "link.done", name=html.escape(linked_name)), parse_mode=ParseMode.HTML
        )
        await _notify_linked(context, user.id, linked_name, lang)
        return

    await msg.reply_text(t(lang, f"link.{result.status.value}"))


async def cmd_unlink(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    config = _config(context)
    msg = update.effective_message
    user = update.effective_user
    if not msg or not user or not _in_link_chat(update, config):
        return

    await _send_typing(context, msg.chat_id)
    result = await _workflow(context).unlink(user.id)
    logger.info("unlink user_id=%s -> %s (recovered=%s)", user.id, result.status.value, result.recovered)
    await msg.reply_text(unlink_message(result, config.bot_language))


async def on_chat_member_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    A user leaving (or being removed from) the community chat loses their
    whitelist entry.
    """
    config = _config(context)
    chat = update.effective_chat
    member = update.chat_member
    if not member or not chat or config.community_chat_id is None:
        return
    if chat.id != config.community_chat_id:
        return

    new_state = member.new_chat_member
    user = getattr(new_state, "user", None)
    if not user or user.is_bot:
        return

    if not _is_gone(new_state) or not _is_present(member.old_chat_member):
        return
    new_val = _status_value(new_state)

    logger.info("user_id=%s left chat %s (%s); unlinking", user.id, chat.id, new_val)
    result = await _workflow(context).unlink(user.id)
    if result.status in (UnlinkStatus.DONE, UnlinkStatus.NOOP):
        logger.info("departure unlink user_id=%s -> %s", user.id, result.status.value)
    else:
        logger.error(
            "departure unlink user_id=%s failed (%s); account kept for manual cleanup",
            user.id,
            result.status.value,
        )


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Global error handler for PTB. Keeps the traceback in logs and avoids crashing
    the application when an update causes an exception.
    """
    err = getattr(context, "error", None)
    logger.error(
        "Unhandled exception while processing update: %r", update, exc_info=err
    )
