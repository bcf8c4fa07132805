"""
Configuration loader: layered YAML files + environment variable overrides,
and resolution into the typed settings the runtime consumes.
"""

from __future__ import annotations
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml

from ..core.errors import ConfigError
from ..core.models import ContextSettings, DEFAULT_COMPACT_PROMPT
from ..core.safety import DEFAULT_BASH_PREFIXES, SafetySettings
from ..mcp.types import McpError, McpServerConfig

logger = logging.getLogger(__name__)

SETTINGS_DIR = ".coding-agent"
SETTINGS_FILE = "settings.yaml"
LOCAL_SETTINGS_FILE = "settings.local.yaml"

ENV_MAPPINGS = {
    "ANTHROPIC_API_KEY": "providers.anthropic.api_key",
    "ANTHROPIC_AUTH_TOKEN": "providers.anthropic.auth_token",
    "ANTHROPIC_BASE_URL": "providers.anthropic.base_url",
    "ANTHROPIC_MODEL": "llm.model",
    "CODING_AGENT_PROVIDER": "llm.provider",
    "CODING_AGENT_YOLO": "safety.yolo",
}

_TRUTHY = {"1", "true", "yes", "on"}


class Config:
    """Configuration container with dot-path access."""

    def __init__(self, data: dict):
        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        """Get a config value by dot-separated key path."""
        value = self._data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a config value by dot-separated key path."""
        keys = key.split(".")
        d = self._data
        for k in keys[:-1]:
            if not isinstance(d.get(k), dict):
                d[k] = {}
            d = d[k]
        d[keys[-1]] = value

    @property
    def raw(self) -> dict:
        return self._data

    def __repr__(self) -> str:
        return f"Config(keys={sorted(self._data)})"


def load_config(
    config_path: Optional[str] = None,
    project_root: Optional[str] = None,
    home_dir: Optional[str] = None,
    environ: Optional[dict] = None,
) -> Config:
    """
    Load configuration.

    Priority (highest to lowest):
    1. Environment variables (see ENV_MAPPINGS)
    2. Explicit config file (``--config``)
    3. <project>/.coding-agent/settings.local.yaml
    4. <project>/.coding-agent/settings.yaml
    5. ~/.coding-agent/settings.yaml
    6. Packaged default_config.yaml
    """
    default_path = Path(__file__).parent / "default_config.yaml"
    data = _read_yaml(default_path)

    home = Path(home_dir) if home_dir else Path.home()
    project = Path(project_root or os.getcwd())
    layers = [
        home / SETTINGS_DIR / SETTINGS_FILE,
        project / SETTINGS_DIR / SETTINGS_FILE,
        project / SETTINGS_DIR / LOCAL_SETTINGS_FILE,
    ]
    for path in layers:
        if path.is_file():
            data = _deep_merge(data, _read_yaml(path))
            logger.debug(f"Loaded settings from {path}")

    if config_path:
        if not Path(config_path).is_file():
            raise ConfigError(f"Config file not found: {config_path}")
        data = _deep_merge(data, _read_yaml(Path(config_path)))

    config = Config(data)
    env = os.environ if environ is None else environ
    for env_key, config_key in ENV_MAPPINGS.items():
        env_val = env.get(env_key)
        if env_val is None or env_val == "":
            continue
        if config_key == "safety.yolo":
            config.set(config_key, env_val.strip().lower() in _TRUTHY)
        else:
            config.set(config_key, env_val)
    return config


def _read_yaml(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file must contain a mapping: {path}")
    return data


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay dict into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# ── Resolution ───────────────────────────────────────────────────

def resolve_context_settings(config: Config) -> ContextSettings:
    defaults = ContextSettings()
    window = int(config.get("context.context_window_tokens", defaults.context_window_tokens))
    limit = int(config.get("context.auto_compact_token_limit", defaults.auto_compact_token_limit))
    if limit > window:
        logger.warning(f"auto_compact_token_limit {limit} exceeds the window {window}; clamping")
        limit = window
    return ContextSettings(
        context_window_tokens=window,
        auto_compact_token_limit=limit,
        recent_messages_to_keep=int(
            config.get("context.recent_messages_to_keep", defaults.recent_messages_to_keep)
        ),
        compact_prompt=config.get("context.compact_prompt") or DEFAULT_COMPACT_PROMPT,
        compact_max_output_tokens=int(
            config.get("context.compact_max_output_tokens", defaults.compact_max_output_tokens)
        ),
        enable_auto_compact=bool(config.get("context.enable_auto_compact", True)),
    )


def resolve_safety_settings(config: Config, project_root: str) -> SafetySettings:
    root = os.path.abspath(project_root)
    write_roots = [
        os.path.normpath(os.path.join(root, os.path.expanduser(p)))
        for p in config.get("safety.allowed_write_roots", []) or []
    ]
    return SafetySettings(
        project_root=root,
        allowed_write_roots=write_roots,
        auto_allowed_bash_prefixes=list(
            config.get("safety.auto_allowed_bash_prefixes", DEFAULT_BASH_PREFIXES)
        ),
        auto_allowed_tools=list(config.get("safety.auto_allowed_tools", []) or []),
        bypass_all=bool(config.get("safety.yolo", False)),
    )


def resolve_mcp_servers(config: Config) -> dict[str, McpServerConfig]:
    servers = {}
    for name, raw in (config.get("mcp.servers", {}) or {}).items():
        if "." in name:
            raise ConfigError(f'MCP server name must not contain ".": {name}')
        try:
            servers[name] = McpServerConfig.from_dict(raw or {})
        except (McpError, TypeError) as e:
            raise ConfigError(f'Invalid MCP server "{name}": {e}') from e
    return servers


# ── Persistence ──────────────────────────────────────────────────

class SettingsStore:
    """
    Writes user decisions back to the project settings file.

    Usage:
        store = SettingsStore("/repo")
        store.add_auto_allowed_tool("bash")   # blocking; call from a worker thread
    """

    def __init__(self, project_root: str):
        self.path = Path(project_root) / SETTINGS_DIR / SETTINGS_FILE
        self._lock = threading.Lock()

    def add_auto_allowed_tool(self, tool_name: str) -> bool:
        """Append ``tool_name`` to safety.auto_allowed_tools. Returns False if already present."""
        with self._lock:
            data = _read_yaml(self.path) if self.path.is_file() else {}
            config = Config(data)
            tools = list(config.get("safety.auto_allowed_tools", []) or [])
            if tool_name in tools:
                return False
            tools.append(tool_name)
            config.set("safety.auto_allowed_tools", tools)

            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(config.raw, f, default_flow_style=False, sort_keys=False)
        logger.info(f"Persisted auto-allowed tool {tool_name} to {self.path}")
        return True
