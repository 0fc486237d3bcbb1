"""Typed settings parsed from the configuration document."""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .core.exceptions import ConfigurationError
from .core.model_selector import DEFAULT_TIERS, MODEL_TEXT_EMBEDDING, MODEL_VERTIGO_BLAST
from .core.upstream import DEFAULT_API_VERSION, DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from .database.factory import DEFAULT_DATABASE_CONFIG
from .orchestrator import DEFAULT_QUARANTINE_SECONDS

logger = logging.getLogger("vertigo-proxy")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@dataclass
class ServerSettings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


@dataclass
class GeminiSettings:
    api_keys: list[str] = field(default_factory=list)
    base_url: str = DEFAULT_BASE_URL
    api_version: str = DEFAULT_API_VERSION
    request_timeout: float = DEFAULT_TIMEOUT
    quarantine_seconds: float = DEFAULT_QUARANTINE_SECONDS


@dataclass
class ModelSettings:
    alias: str = MODEL_VERTIGO_BLAST
    tiers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TIERS))
    legacy_completion_model: Optional[str] = None
    embedding_model: str = MODEL_TEXT_EMBEDDING


@dataclass
class ConversationSettings:
    enabled: bool = True
    backend: str = "memory"
    expose_id: bool = False
    persist_streamed_turns: bool = False
    database: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_DATABASE_CONFIG))


@dataclass
class Settings:
    server: ServerSettings = field(default_factory=ServerSettings)
    gemini: GeminiSettings = field(default_factory=GeminiSettings)
    models: ModelSettings = field(default_factory=ModelSettings)
    conversations: ConversationSettings = field(default_factory=ConversationSettings)
    log_level: str = "INFO"


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"'{name}' must be a mapping")
    return value


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_number(value: Any, name: str, default: float) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'{name}' must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigurationError(f"'{name}' must be positive")
    return number


def _parse_api_keys(raw: Any) -> list[str]:
    # A single string may hold a comma-separated list (handy with ${ENV} substitution)
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        raise ConfigurationError("'gemini.api_keys' must be a list of strings")
    keys = [str(item).strip() for item in raw if item is not None and str(item).strip()]
    if not keys:
        raise ConfigurationError("'gemini.api_keys' must contain at least one credential")
    return keys


def parse_settings(config: Mapping[str, Any]) -> Settings:
    """Build typed settings from a loaded configuration mapping.

    ``VERTIGO_HOST`` and ``VERTIGO_PORT`` override the bind address.

    Raises:
        ConfigurationError: A required value is missing or has the wrong type.
    """
    server_cfg = _section(config, "server")
    gemini_cfg = _section(config, "gemini")
    models_cfg = _section(config, "models")
    conv_cfg = _section(config, "conversations")
    logging_cfg = _section(config, "logging")

    host = os.getenv("VERTIGO_HOST") or server_cfg.get("host") or DEFAULT_HOST
    raw_port = os.getenv("VERTIGO_PORT") or server_cfg.get("port") or DEFAULT_PORT
    try:
        port = int(raw_port)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"'server.port' must be an integer, got {raw_port!r}") from exc

    gemini = GeminiSettings(
        api_keys=_parse_api_keys(gemini_cfg.get("api_keys")),
        base_url=str(gemini_cfg.get("base_url") or DEFAULT_BASE_URL),
        api_version=str(gemini_cfg.get("api_version") or DEFAULT_API_VERSION),
        request_timeout=_as_number(
            gemini_cfg.get("request_timeout"), "gemini.request_timeout", DEFAULT_TIMEOUT
        ),
        quarantine_seconds=_as_number(
            gemini_cfg.get("quarantine_seconds"),
            "gemini.quarantine_seconds",
            DEFAULT_QUARANTINE_SECONDS,
        ),
    )

    tiers = dict(DEFAULT_TIERS)
    raw_tiers = models_cfg.get("tiers") or {}
    if not isinstance(raw_tiers, Mapping):
        raise ConfigurationError("'models.tiers' must be a mapping")
    for tier, model in raw_tiers.items():
        if tier not in DEFAULT_TIERS:
            raise ConfigurationError(
                f"Unknown model tier '{tier}'. Supported: {', '.join(DEFAULT_TIERS)}"
            )
        if model:
            tiers[tier] = str(model)

    models = ModelSettings(
        alias=str(models_cfg.get("alias") or MODEL_VERTIGO_BLAST),
        tiers=tiers,
        legacy_completion_model=models_cfg.get("legacy_completion_model") or None,
        embedding_model=str(models_cfg.get("embedding_model") or MODEL_TEXT_EMBEDDING),
    )

    database = conv_cfg.get("database") or dict(DEFAULT_DATABASE_CONFIG)
    if not isinstance(database, Mapping):
        raise ConfigurationError("'conversations.database' must be a mapping")
    conversations = ConversationSettings(
        enabled=_as_bool(conv_cfg.get("enabled"), True),
        backend=str(conv_cfg.get("backend") or "memory").lower(),
        expose_id=_as_bool(conv_cfg.get("expose_id"), False),
        persist_streamed_turns=_as_bool(conv_cfg.get("persist_streamed_turns"), False),
        database=dict(database),
    )
    if conversations.backend not in ("memory", "database", "sqlite"):
        raise ConfigurationError(
            f"Unsupported conversation backend '{conversations.backend}'. Supported: memory, database"
        )

    settings = Settings(
        server=ServerSettings(host=str(host), port=port),
        gemini=gemini,
        models=models,
        conversations=conversations,
        log_level=str(logging_cfg.get("level") or "INFO").upper(),
    )
    logger.debug(
        "Parsed settings: %d credential(s), alias=%s, conversations=%s/%s",
        len(gemini.api_keys),
        models.alias,
        conversations.enabled,
        conversations.backend,
    )
    return settings
