"""Alias model resolution."""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

logger = logging.getLogger("vertigo-proxy")

MODEL_VERTIGO_BLAST = "vertigo-1.0-blast"
MODEL_GEMINI_20_FLASH = "gemini-2.0-flash"
MODEL_GEMINI_25_FLASH_LITE = "gemini-2.5-flash-lite"
MODEL_GEMINI_25_FLASH = "gemini-2.5-flash"
MODEL_GEMINI_25_PRO = "gemini-2.5-pro"
MODEL_TEXT_EMBEDDING = "text-embedding-004"

EFFORT_FIELD = "reasoning_effort"

DEFAULT_TIERS = {
    "fast": MODEL_GEMINI_20_FLASH,
    "balanced": MODEL_GEMINI_25_FLASH,
    "best": MODEL_GEMINI_25_PRO,
}

EFFORT_TIERS = {
    "low": "fast",
    "medium": "balanced",
    "high": "best",
}

LEGACY_COMPLETION_MODELS = ("text-davinci-003", "gpt-3.5-turbo-instruct")
OPENAI_EMBEDDING_MODELS = (
    "text-embedding-ada-002",
    "text-embedding-3-small",
    "text-embedding-3-large",
)


@dataclass
class ModelSelector:
    """Maps client-visible model names onto concrete upstream models."""

    alias: str = MODEL_VERTIGO_BLAST
    tiers: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TIERS))
    legacy_completion_model: Optional[str] = None
    embedding_model: str = MODEL_TEXT_EMBEDDING

    @property
    def default_model(self) -> str:
        return self.tiers["balanced"]

    def select(
        self, requested_model: str, effort_hint: Optional[str] = None
    ) -> str:
        """Resolve a requested model and effort hint to an upstream model id."""
        if requested_model != self.alias:
            return requested_model
        tier = EFFORT_TIERS.get(str(effort_hint).strip().lower()) if effort_hint else None
        resolved = self.tiers[tier] if tier else self.default_model
        logger.debug(
            "Resolved alias %s (effort=%s) to %s", self.alias, effort_hint, resolved
        )
        return resolved

    def select_for_payload(
        self, payload: Mapping[str, Any], requested_model: Optional[str] = None
    ) -> tuple[str, dict[str, Any]]:
        """Resolve the payload's model, consuming the effort hint for the alias.

        ``requested_model`` is the already validated model name; when omitted
        the payload's ``model`` is used with surrounding whitespace removed.

        Returns:
            The resolved model and a payload copy. For the alias the copy has
            its ``model`` rewritten and the effort field removed; any other
            model leaves the payload untouched.
        """
        requested = requested_model
        if requested is None:
            requested = str(payload.get("model") or "").strip()
        updated = dict(payload)
        if requested != self.alias:
            return requested, updated
        resolved = self.select(requested, payload.get(EFFORT_FIELD))
        updated["model"] = resolved
        updated.pop(EFFORT_FIELD, None)
        return resolved, updated

    def select_completion_model(
        self, requested_model: str, effort_hint: Optional[str] = None
    ) -> str:
        """Map legacy completion model names onto the chat tiers."""
        if requested_model in LEGACY_COMPLETION_MODELS:
            return self.legacy_completion_model or self.default_model
        return self.select(requested_model, effort_hint)

    def select_embedding_model(self, requested_model: str) -> str:
        if requested_model in OPENAI_EMBEDDING_MODELS:
            return self.embedding_model
        return requested_model

    def advertised_models(self) -> list[tuple[str, str]]:
        """Model ids and owners for the models endpoint, without duplicates."""
        entries: list[tuple[str, str]] = [(self.alias, "vertigo")]
        candidates = [
            self.tiers.get("fast"),
            MODEL_GEMINI_25_FLASH_LITE,
            self.tiers.get("balanced"),
            self.tiers.get("best"),
            self.legacy_completion_model,
            self.embedding_model,
        ]
        seen = {self.alias}
        for model_id in candidates:
            if model_id and model_id not in seen:
                seen.add(model_id)
                entries.append((model_id, "google"))
        return entries
