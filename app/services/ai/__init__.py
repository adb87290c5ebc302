"""
AI Services
===========
Optional LLM-backed watering advice.

Services:
- LLMBackend / create_backend: hosted model backends (OpenAI, Anthropic)
- WateringAdvisor: prompt building and reply parsing for watering decisions

All public symbols are importable via ``from app.services.ai import X``.
Imports are lazy, so the SDK-facing modules load only when first used.
"""

from __future__ import annotations

import importlib
from typing import Any

# ── Symbol → submodule mapping ──────────────────────────────────────
_LAZY_IMPORTS: dict[str, str] = {
    # llm_backends
    "AnthropicBackend": "app.services.ai.llm_backends",
    "LLMBackend": "app.services.ai.llm_backends",
    "LLMResponse": "app.services.ai.llm_backends",
    "OpenAIBackend": "app.services.ai.llm_backends",
    "create_backend": "app.services.ai.llm_backends",
    # watering_advisor
    "WateringAdvisor": "app.services.ai.watering_advisor",
    "WateringContext": "app.services.ai.watering_advisor",
    "build_prompt": "app.services.ai.watering_advisor",
    "extract_json_object": "app.services.ai.watering_advisor",
    "interpret_decision": "app.services.ai.watering_advisor",
}

__all__ = list(_LAZY_IMPORTS.keys())


def __getattr__(name: str) -> Any:
    """Lazy-load symbols on first access."""
    module_path = _LAZY_IMPORTS.get(name)
    if module_path is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = importlib.import_module(module_path)
    value = getattr(module, name)
    # Cache on the module so subsequent accesses skip __getattr__
    globals()[name] = value
    return value
