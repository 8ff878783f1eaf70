"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags
"""

from __future__ import annotations

import math
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

PROVIDER_NAMES = ("openai", "anthropic", "gemini", "ollama")

DEFAULT_COMPLETION_MARKER = "[TASK_COMPLETE]"

# (base_url, model, api_key_env) per provider.
_PROVIDER_DEFAULTS: dict[str, tuple[str, str, str]] = {
    "openai": ("https://api.openai.com/v1", "gpt-4o", "OPENAI_API_KEY"),
    "anthropic": ("https://api.anthropic.com", "claude-sonnet-4-5", "ANTHROPIC_API_KEY"),
    "gemini": ("https://generativelanguage.googleapis.com", "gemini-2.5-flash", "GEMINI_API_KEY"),
    "ollama": ("http://localhost:11434", "llama3.1", ""),
}


# ---------------------------------------------------------------------------
# Resolved, immutable per-call config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContextLimits:
    model_context_limit: int
    model_output_limit: int

    def budget(self, reserved_buffer: int) -> int:
        """Tokens left for system + history + prompt once output is reserved."""
        return self.model_context_limit - self.model_output_limit - reserved_buffer


def default_context_limits(provider: str) -> ContextLimits:
    """Context window and output reservation used when none is configured."""
    if provider == "anthropic":
        return ContextLimits(200_000, math.floor(200_000 * 0.08))
    if provider == "gemini":
        return ContextLimits(1_000_000, 8_192)
    if provider == "ollama":
        return ContextLimits(8_192, 2_048)
    return ContextLimits(128_000, 4_096)


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    model: str
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.7
    context_limits: ContextLimits = field(
        default_factory=lambda: default_context_limits("openai")
    )


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ProviderSettings:
    name: str = "openai"
    model: str = ""
    api_key_env: str = ""
    base_url: str = ""
    temperature: float = 0.7
    model_context_limit: int = 0
    model_output_limit: int = 0
    timeout_seconds: int = 120

    def to_provider_config(self) -> ProviderConfig:
        """
        Resolve defaults and the API key into a frozen ``ProviderConfig``.

        Empty fields fall back to the provider's defaults.  The key is read
        from the environment variable named by ``api_key_env``.
        """
        if self.name not in PROVIDER_NAMES:
            raise ValueError(
                f"Unknown provider {self.name!r}. Expected one of {list(PROVIDER_NAMES)}"
            )
        base_url, model, key_env = _PROVIDER_DEFAULTS[self.name]
        key_env = self.api_key_env or key_env

        limits = default_context_limits(self.name)
        context_limit = self.model_context_limit or limits.model_context_limit
        if self.model_output_limit:
            output_limit = self.model_output_limit
        elif self.name == "anthropic":
            output_limit = math.floor(context_limit * 0.08)
        else:
            output_limit = limits.model_output_limit

        return ProviderConfig(
            provider=self.name,
            model=self.model or model,
            api_key=os.environ.get(key_env, "") if key_env else "",
            base_url=(self.base_url or base_url).rstrip("/"),
            temperature=self.temperature,
            context_limits=ContextLimits(context_limit, output_limit),
        )


@dataclass
class LoopSettings:
    max_iterations: int = 10
    total_timeout_seconds: float = 600.0
    round_timeout_seconds: float = 60.0
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    completion_marker: str = DEFAULT_COMPLETION_MARKER
    tool_result_max_chars: int = 8000
    catalog_ttl_seconds: float = 300.0


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


@dataclass
class AgentLoopConfig:
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_provider_config(self) -> ProviderConfig:
        return self.provider.to_provider_config()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise KeyError(f"Unknown config key {dotpath!r}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in (raw or {}).items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "AGENTLOOP_PROVIDER":              ("provider.name", str),
    "AGENTLOOP_MODEL":                 ("provider.model", str),
    "AGENTLOOP_API_KEY_ENV":           ("provider.api_key_env", str),
    "AGENTLOOP_BASE_URL":              ("provider.base_url", str),
    "AGENTLOOP_TEMPERATURE":           ("provider.temperature", float),
    "AGENTLOOP_CONTEXT_LIMIT":         ("provider.model_context_limit", int),
    "AGENTLOOP_OUTPUT_LIMIT":          ("provider.model_output_limit", int),
    "AGENTLOOP_TIMEOUT":               ("provider.timeout_seconds", int),
    "AGENTLOOP_MAX_ITERATIONS":        ("loop.max_iterations", int),
    "AGENTLOOP_TOTAL_TIMEOUT":         ("loop.total_timeout_seconds", float),
    "AGENTLOOP_ROUND_TIMEOUT":         ("loop.round_timeout_seconds", float),
    "AGENTLOOP_MAX_RETRIES":           ("loop.max_retries", int),
    "AGENTLOOP_RETRY_DELAY":           ("loop.retry_delay_seconds", float),
    "AGENTLOOP_COMPLETION_MARKER":     ("loop.completion_marker", str),
    "AGENTLOOP_TOOL_RESULT_MAX_CHARS": ("loop.tool_result_max_chars", int),
    "AGENTLOOP_CATALOG_TTL":           ("loop.catalog_ttl_seconds", float),
}

DEFAULT_CONFIG_PATH = "~/.agentloop/config.yaml"


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> AgentLoopConfig:
    """
    Build an AgentLoopConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags

    Parameters
    ----------
    config_path : path to YAML config file (optional; missing files are ignored)
    cli_overrides : dict of dotpath -> value CLI flag overrides; ``None``
        values are skipped so unset flags do not clobber lower layers
    """
    raw: dict[str, Any] = {}

    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    cfg = AgentLoopConfig(
        provider=_build_section(ProviderSettings, raw.get("provider", {})),
        loop=_build_section(LoopSettings, raw.get("loop", {})),
    )

    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            if value is not None:
                _apply_dotpath(cfg, dotpath, value)

    return cfg
