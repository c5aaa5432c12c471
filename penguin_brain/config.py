"""Central configuration constants for Penguin Brain."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Final, Optional

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for 3.10
    import tomli as tomllib

PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = Path(os.environ.get("PENGUIN_CONFIG_FILE", PROJECT_ROOT / "penguin.toml"))


def _load_config_data() -> Dict[str, Any]:
    if DEFAULT_CONFIG_PATH.exists():
        with DEFAULT_CONFIG_PATH.open("rb") as fh:
            return tomllib.load(fh)
    return {}


_CONFIG_DATA = _load_config_data()


def _get_section_setting(section: str, name: str, default: Any) -> str:
    """Resolve PENGUIN_<SECTION>_<NAME>, then the toml section, then the default."""

    env_key = f"PENGUIN_{section.upper()}_{name.upper()}"
    if env_key in os.environ:
        return os.environ[env_key]
    data_section = _CONFIG_DATA.get(section, {})
    return str(data_section.get(name, default))


def _get_data_setting(name: str, default: str) -> str:
    env_key = f"PENGUIN_{name.upper()}"
    if env_key in os.environ:
        return os.environ[env_key]
    data_section = _CONFIG_DATA.get("data", {})
    return str(data_section.get(name, default))


def _get_llm_setting(name: str, default: Any) -> str:
    return _get_section_setting("llm", name, default)


def _get_agent_setting(name: str, default: Any) -> str:
    return _get_section_setting("agent", name, default)


def _get_knowledge_setting(name: str, default: Any) -> str:
    return _get_section_setting("knowledge", name, default)


def _get_rate_limit_setting(name: str, default: Any) -> str:
    return _get_section_setting("rate_limit", name, default)


def _get_security_list_setting(name: str, default: list[str]) -> tuple[str, ...]:
    env_key = f"PENGUIN_SECURITY_{name.upper()}"
    if env_key in os.environ:
        raw = os.environ[env_key]
    else:
        security_section = _CONFIG_DATA.get("security", {})
        raw = security_section.get(name)
    if raw is None:
        return tuple(default)
    if isinstance(raw, str):
        items = [item.strip() for item in raw.split(",") if item.strip()]
    elif isinstance(raw, (list, tuple)):
        items = [str(item).strip() for item in raw if str(item).strip()]
    else:
        return tuple(default)
    return tuple(items) if items else tuple(default)


def _security_phrases_default() -> tuple[str, ...]:
    base = [
        "ignore previous instructions",
        "ignore all previous instructions",
        "override the system prompt",
        "you are now",
        "forget all prior",
        "end of system instructions",
        "new instructions:",
    ]
    return _get_security_list_setting("suspicious_phrases", base)


DATA_ROOT = Path(_get_data_setting("root", str(Path.home() / ".penguin_brain")))
STATE_DIR = Path(_get_data_setting("state_dir", str(DATA_ROOT / "state")))
SQLITE_PATH = Path(
    os.environ.get("PENGUIN_SQLITE_PATH", STATE_DIR / "penguin.sqlite3")
)


@dataclass(frozen=True)
class Paths:
    """Filesystem paths used throughout the project."""

    project_root: Path = PROJECT_ROOT
    data_root: Path = DATA_ROOT
    state_dir: Path = STATE_DIR
    sqlite_path: Path = SQLITE_PATH
    config_file: Path = DEFAULT_CONFIG_PATH


@dataclass(frozen=True)
class LLMConfig:
    """Provider endpoints and request limits shared by every tenant connection.

    Tenants bring their own provider and model; only transport settings
    live here.
    """

    request_timeout: int = int(_get_llm_setting("timeout", 120))
    max_tokens: int = int(_get_llm_setting("max_tokens", 4096))
    anthropic_version: str = _get_llm_setting("anthropic_version", "2023-06-01")
    openai_url: str = _get_llm_setting("openai_url", "https://api.openai.com/v1/chat/completions")
    openrouter_url: str = _get_llm_setting(
        "openrouter_url", "https://openrouter.ai/api/v1/chat/completions"
    )
    anthropic_url: str = _get_llm_setting("anthropic_url", "https://api.anthropic.com/v1/messages")
    google_base_url: str = _get_llm_setting(
        "google_base_url", "https://generativelanguage.googleapis.com/v1beta/models"
    )
    ollama_url: str = _get_llm_setting("ollama_url", "http://localhost:11434")
    lmstudio_url: str = _get_llm_setting("lmstudio_url", "http://localhost:1234")
    app_referer: str = _get_llm_setting("app_referer", "https://autopenguin.app")
    app_title: str = _get_llm_setting("app_title", "AutoPenguin")


@dataclass(frozen=True)
class AgentConfig:
    """Tunable parameters for one orchestration turn."""

    max_message_chars: int = int(_get_agent_setting("max_message_chars", 4000))
    history_window_minutes: int = int(_get_agent_setting("history_window_minutes", 15))
    history_limit: int = int(_get_agent_setting("history_limit", 10))
    grounding_window: int = int(_get_agent_setting("grounding_window", 6))
    duplicate_window_minutes: int = int(_get_agent_setting("duplicate_window_minutes", 60))
    duplicate_lookback: int = int(_get_agent_setting("duplicate_lookback", 5))
    recent_tasks: int = int(_get_agent_setting("recent_tasks", 20))
    recent_leads: int = int(_get_agent_setting("recent_leads", 20))
    recent_contacts: int = int(_get_agent_setting("recent_contacts", 20))
    recent_projects: int = int(_get_agent_setting("recent_projects", 50))
    context_workers: int = int(_get_agent_setting("context_workers", 6))
    default_timezone: str = _get_agent_setting("default_timezone", "Asia/Hong_Kong")
    default_currency: str = _get_agent_setting("default_currency", "HKD")
    default_assistant_name: str = _get_agent_setting("default_assistant_name", "Penguin")


@dataclass(frozen=True)
class KnowledgeConfig:
    """Knowledge-base retrieval and retention settings."""

    match_threshold: float = float(_get_knowledge_setting("match_threshold", 0.5))
    match_count: int = int(_get_knowledge_setting("match_count", 3))
    tool_match_count: int = int(_get_knowledge_setting("tool_match_count", 5))
    max_match_count: int = int(_get_knowledge_setting("max_match_count", 10))
    memory_cap: int = int(_get_knowledge_setting("memory_cap", 200))
    embed_model: str = _get_knowledge_setting("embed_model", "sentence-transformers/all-MiniLM-L6-v2")


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-instance request throttling for the HTTP surface."""

    max_requests: int = int(_get_rate_limit_setting("max_requests", 10))
    window_seconds: float = float(_get_rate_limit_setting("window_seconds", 60))
    max_keys: int = int(_get_rate_limit_setting("max_keys", 10000))
    sweep_interval_seconds: float = float(_get_rate_limit_setting("sweep_interval_seconds", 60))


@dataclass(frozen=True)
class SecurityConfig:
    """Application-layer security controls."""

    context_char_budget: int = int(os.environ.get("PENGUIN_SECURITY_CONTEXT_CHAR_BUDGET", 6000))
    enable_injection_filter: bool = bool(int(os.environ.get("PENGUIN_SECURITY_ENABLE_INJECTION_FILTER", "1")))
    suspicious_phrases: tuple[str, ...] = field(default_factory=_security_phrases_default)


@dataclass(frozen=True)
class AppConfig:
    """Aggregate configuration for the Penguin Brain runtime."""

    paths: Paths = Paths()
    llm: LLMConfig = LLMConfig()
    agent: AgentConfig = AgentConfig()
    knowledge: KnowledgeConfig = KnowledgeConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    security: SecurityConfig = SecurityConfig()


CONFIG: Final[AppConfig] = AppConfig()

# Ensure important directories exist at import time.
for required_path in [
    CONFIG.paths.data_root,
    CONFIG.paths.state_dir,
]:
    required_path.mkdir(parents=True, exist_ok=True)
