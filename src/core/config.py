from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml


def _get_bool(env_key: str, default: bool) -> bool:
    raw = os.getenv(env_key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_int(env_key: str, default: int) -> int:
    raw = os.getenv(env_key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(env_key: str, default: float) -> float:
    raw = os.getenv(env_key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_opt(env_key: str) -> str | None:
    """Return a trimmed string or None if the env var is not set / empty."""
    raw = os.getenv(env_key)
    if raw is None:
        return None
    s = raw.strip()
    return s or None


def _get_opt_int(env_key: str) -> int | None:
    raw = _get_opt(env_key)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


@dataclass(frozen=True)
class ServerTarget:
    host: str
    port: int
    shared_secret: str
    name: str = ""

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def label(self) -> str:
        return self.name or self.address


@dataclass(frozen=True)
class AppConfig:
    bot_token: str
    public_base_url: str
    webhook_secret_path: str
    webhook_secret_token: str | None

    database_url: str
    db_create_schema: bool

    log_level: str
    bot_language: str

    server_host: str
    server_port: int

    link_chat_id: int | None
    community_chat_id: int | None

    servers_file: str
    whitelist_max_attempts: int
    whitelist_retry_delay_secs: float
    rcon_timeout_secs: float

    mojang_profiles_url: str
    mojang_history_url: str
    identity_timeout_secs: float

    admin_token: str | None


def load_config() -> AppConfig:
    link_chat_id = _get_opt_int("LINK_CHAT_ID")
    return AppConfig(
        bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "").rstrip("/"),
        webhook_secret_path=os.getenv("WEBHOOK_SECRET_PATH", "webhook").strip("/"),
        webhook_secret_token=_get_opt("WEBHOOK_SECRET_TOKEN"),
        database_url=os.getenv("DATABASE_URL", "").strip(),
        db_create_schema=_get_bool("DB_CREATE_SCHEMA", False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        bot_language=(_get_opt("BOT_LANGUAGE") or "en").lower(),
        server_host=(_get_opt("APP_HOST") or _get_opt("HOST") or "0.0.0.0"),
        server_port=_get_int("APP_PORT", _get_int("PORT", 50042)),
        link_chat_id=link_chat_id,
        community_chat_id=_get_opt_int("COMMUNITY_CHAT_ID") or link_chat_id,
        servers_file=_get_opt("WHITELIST_SERVERS_FILE") or "servers.yaml",
        whitelist_max_attempts=max(1, _get_int("WHITELIST_MAX_ATTEMPTS", 10)),
        whitelist_retry_delay_secs=max(0.0, _get_float("WHITELIST_RETRY_DELAY_SECS", 2.0)),
        rcon_timeout_secs=_get_float("RCON_TIMEOUT_SECS", 10.0),
        mojang_profiles_url=(
            _get_opt("MOJANG_PROFILES_URL") or "https://api.mojang.com/profiles/minecraft"
        ),
        mojang_history_url=(
            _get_opt("MOJANG_HISTORY_URL") or "https://api.mojang.com/user/profiles"
        ).rstrip("/"),
        identity_timeout_secs=_get_float("IDENTITY_TIMEOUT_SECS", 10.0),
        admin_token=_get_opt("ADMIN_TOKEN"),
    )


def parse_server_targets(data: object) -> tuple[ServerTarget, ...]:
    """
    Build the fleet from a parsed YAML document of the form:

        servers:
          - host: mc1.example.org
            port: 25575
            password: secret
            name: survival      # optional
    """
    if data is None:
        return ()
    if not isinstance(data, dict):
        raise ValueError("server list must be a mapping with a 'servers' key")
    entries = data.get("servers") or []
    if not isinstance(entries, list):
        raise ValueError("'servers' must be a list")

    out: list[ServerTarget] = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValueError(f"servers[{i}] must be a mapping")
        host = str(entry.get("host") or entry.get("ip") or "").strip()
        if not host:
            raise ValueError(f"servers[{i}] is missing 'host'")
        try:
            port = int(entry.get("port", 25575))
        except (TypeError, ValueError):
            raise ValueError(f"servers[{i}] has an invalid 'port'") from None
        if not 0 < port < 65536:
            raise ValueError(f"servers[{i}] port {port} out of range")
        secret = entry.get("password", entry.get("pass"))
        if secret is None:
            raise ValueError(f"servers[{i}] is missing 'password'")
        out.append(
            ServerTarget(
                host=host,
                port=port,
                shared_secret=str(secret),
                name=str(entry.get("name") or ""),
            )
        )
    return tuple(out)


def load_server_targets(path: str | Path) -> tuple[ServerTarget, ...]:
    p = Path(path)
    with p.open(encoding="utf-8") as f:
        return parse_server_targets(yaml.safe_load(f))
