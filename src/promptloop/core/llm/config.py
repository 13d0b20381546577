# PromptLoop
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of PromptLoop.
#
# PromptLoop is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
PromptLoop -- Text Generation Model Configuration

Two roles talk to a text-generation service:
  - drafter: writes the revised prompt (heavier model, higher temperature)
  - prober:  answers the regression panel through a candidate prompt

Each role can use any supported provider:
  - openai, anthropic, ollama, google, groq, openrouter, mistral, together
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, List


# =============================================================================
# SUPPORTED PROVIDERS
# =============================================================================

PROVIDERS = {
    "openai": {
        "name": "OpenAI",
        "auth": "api_key",
        "default_light": "gpt-4o-mini",
        "default_heavy": "gpt-4o",
    },
    "anthropic": {
        "name": "Anthropic",
        "auth": "api_key",
        "default_light": "claude-haiku-4-5-20251001",
        "default_heavy": "claude-sonnet-4-20250514",
    },
    "ollama": {
        "name": "Ollama (Local)",
        "auth": "none",
        "default_light": "qwen2.5:7b",
        "default_heavy": "qwen2.5:14b",
    },
    "google": {
        "name": "Google Gemini",
        "auth": "api_key",
        "default_light": "gemini-2.5-flash",
        "default_heavy": "gemini-2.5-pro",
    },
    "groq": {
        "name": "Groq",
        "auth": "api_key",
        "default_light": "llama-3.1-8b-instant",
        "default_heavy": "llama-3.3-70b-versatile",
    },
    "openrouter": {
        "name": "OpenRouter",
        "auth": "api_key",
        "default_light": "openai/gpt-4o-mini",
        "default_heavy": "openai/gpt-4o",
    },
    "mistral": {
        "name": "Mistral AI",
        "auth": "api_key",
        "default_light": "mistral-small-latest",
        "default_heavy": "mistral-large-latest",
    },
    "together": {
        "name": "Together AI",
        "auth": "api_key",
        "default_light": "meta-llama/Llama-3.3-70B-Instruct-Turbo",
        "default_heavy": "meta-llama/Llama-3.3-70B-Instruct-Turbo",
    },
}


@dataclass
class RoleConfig:
    """Provider, model and sampling settings for one text-generation role."""
    provider: str = "openai"
    model: str = "gpt-4o"
    temperature: float = 0.7
    max_tokens: int = 2000

    def validate(self) -> List[str]:
        errors = []
        if self.provider not in PROVIDERS:
            errors.append(f"Unknown provider: {self.provider}. Supported: {list(PROVIDERS.keys())}")
        if not self.model:
            errors.append(f"No model configured for provider {self.provider}.")
        if not 0.0 <= self.temperature <= 2.0:
            errors.append(f"Temperature must be within [0, 2], got {self.temperature}.")
        if self.max_tokens <= 0:
            errors.append(f"max_tokens must be positive, got {self.max_tokens}.")
        return errors

    def requires_api_key(self) -> bool:
        return PROVIDERS.get(self.provider, {}).get("auth") == "api_key"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: "RoleConfig" = None) -> "RoleConfig":
        base = defaults or cls()
        return cls(
            provider=data.get("provider", base.provider),
            model=data.get("model", base.model),
            temperature=float(data.get("temperature", base.temperature)),
            max_tokens=int(data.get("max_tokens", base.max_tokens)),
        )


DEFAULT_DRAFTER = RoleConfig(provider="openai", model="gpt-4o", temperature=0.7, max_tokens=2000)
DEFAULT_PROBER = RoleConfig(provider="openai", model="gpt-4o-mini", temperature=0.3, max_tokens=200)
