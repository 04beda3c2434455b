"""Adapter registry and model catalog."""

import logging
from dataclasses import dataclass
from typing import Callable

from ..provider import StreamAdapter

logger = logging.getLogger(__name__)

# Providers that bring their own tools and execution loop.
SELF_CONTAINED_PROVIDERS = {"claude-code", "codex-cli"}

PROVIDER_LABELS = {
    "claude-code": "Claude Code",
    "codex-cli": "Codex CLI",
    "anthropic": "Anthropic",
    "openai": "OpenAI",
    "google-ai": "Google AI",
    "openrouter": "OpenRouter",
    "scripted": "Scripted transcript",
}


class UnknownModelError(LookupError):
    """The requested model id is not in the catalog."""


@dataclass
class ModelDefinition:
    """One selectable model."""

    id: str
    label: str
    provider: str


MODEL_CATALOG: list[ModelDefinition] = [
    ModelDefinition("sonnet", "Claude Sonnet", "claude-code"),
    ModelDefinition("opus", "Claude Opus", "claude-code"),
    ModelDefinition("haiku", "Claude Haiku", "claude-code"),
    ModelDefinition("claude-sonnet-4-5", "Claude Sonnet 4.5", "anthropic"),
    ModelDefinition("claude-opus-4-5", "Claude Opus 4.5", "anthropic"),
    ModelDefinition("gpt-5.1-codex", "GPT-5.1 Codex", "openai"),
    ModelDefinition("gpt-5-mini", "GPT-5 Mini", "openai"),
    ModelDefinition("gemini-2.5-pro", "Gemini 2.5 Pro", "google-ai"),
    ModelDefinition("deepseek/deepseek-chat", "DeepSeek Chat (OpenRouter)", "openrouter"),
    ModelDefinition("scripted", "Scripted transcript", "scripted"),
]

AdapterFactory = Callable[[str], StreamAdapter]

_factories: dict[str, AdapterFactory] = {}


def register_adapter(provider: str, factory: AdapterFactory) -> None:
    """Make ``factory(model_id)`` the adapter constructor for ``provider``."""
    _factories[provider] = factory
    logger.debug("Registered adapter for provider %s", provider)


def unregister_adapter(provider: str) -> None:
    _factories.pop(provider, None)


def is_self_contained(provider: str) -> bool:
    return provider in SELF_CONTAINED_PROVIDERS


def get_model(model_id: str, provider: str | None = None) -> ModelDefinition:
    """Look up a catalog entry, optionally constrained to ``provider``."""
    for model in MODEL_CATALOG:
        if model.id == model_id and (provider is None or model.provider == provider):
            return model
    raise UnknownModelError(f"Unknown model: {model_id}. Use GET /api/models for available models.")


def resolve_adapter(model_id: str, provider: str | None = None) -> tuple[StreamAdapter, str]:
    """Return a fresh adapter for ``model_id`` and its provider id."""
    model = get_model(model_id, provider)
    factory = _factories.get(model.provider)
    if factory is None:
        raise UnknownModelError(f"No adapter registered for provider: {model.provider}")
    adapter = factory(model.id)
    if is_self_contained(model.provider):
        adapter.self_contained = True
    return adapter, model.provider


def get_model_catalog() -> list[dict]:
    """Catalog entries with availability (an adapter is registered for the provider)."""
    catalog = []
    for model in MODEL_CATALOG:
        available = model.provider in _factories
        entry = {
            "id": model.id,
            "label": model.label,
            "provider": model.provider,
            "providerLabel": PROVIDER_LABELS.get(model.provider, model.provider),
            "available": available,
        }
        if not available:
            entry["unavailableReason"] = "No adapter installed"
        catalog.append(entry)
    return catalog


def _register_builtin() -> None:
    from .scripted import ScriptedAdapter

    register_adapter("scripted", ScriptedAdapter)


_register_builtin()
