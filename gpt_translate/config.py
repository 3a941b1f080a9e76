from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml


DEFAULT_CONFIG_FILENAMES: tuple[str, ...] = (
    "gpt-translate.config.yaml",
    "gpt-translate.config.yml",
    "gpt-translate.config.json",
    "gpt-translate.config.toml",
)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-3.5-turbo-16k"
DEFAULT_PROMPT = "Please translate the given text into naturalistic {targetLanguage}."
DEFAULT_TIMEOUT = 120.0
DEFAULT_TOP_P = 0.5

# Environment variable -> configuration key.
ENV_KEYS: dict[str, str] = {
    "OPENAI_API_KEY": "api_key",
    "OPENAI_BASE_URL": "base_url",
    "GPT_TRANSLATE_MODEL": "model",
    "GPT_TRANSLATE_PROMPT": "prompt",
}

_DEFAULT_ENV_PATH = Path(".env")


class ConfigError(RuntimeError):
    """Raised when configuration is missing or cannot be parsed."""


def _candidate_paths(explicit: Optional[str]) -> Iterable[Path]:
    if explicit:
        yield Path(explicit)
        return

    cwd = Path.cwd()
    for name in DEFAULT_CONFIG_FILENAMES:
        candidate = cwd / name
        if candidate.exists():
            yield candidate
            return


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """Load configuration from a file if one exists.

    Parameters
    ----------
    path:
        The explicit path passed via CLI. When ``None`` the default file names are
        probed in the current working directory.
    """

    for candidate in _candidate_paths(path):
        if not candidate.exists():
            raise ConfigError(f"Configuration file {candidate} does not exist")
        text = candidate.read_text(encoding="utf-8")
        suffix = candidate.suffix.lower()
        try:
            if suffix in {".yaml", ".yml"}:
                data = yaml.safe_load(text) or {}
            elif suffix == ".json":
                data = json.loads(text or "{}")
            elif suffix == ".toml":
                data = tomllib.loads(text or "")
            else:
                raise ConfigError(f"Unsupported config format: {candidate.suffix}")
        except (json.JSONDecodeError, tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to parse {candidate}: {exc}") from exc

        if not isinstance(data, dict):
            raise ConfigError("The configuration root must be a mapping/dictionary")

        return data
    return {}


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge two dictionaries recursively without mutating the inputs."""

    result: Dict[str, Any] = dict(base)
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = merge_config(result[key], value)
        else:
            result[key] = value
    return result


def env_config() -> Dict[str, str]:
    """Collect the configuration keys that are set in the environment."""

    values: Dict[str, str] = {}
    for env_key, config_key in ENV_KEYS.items():
        value = os.environ.get(env_key)
        if value:
            values[config_key] = value
    return values


def load_env_file(path: Optional[Path | str] = None) -> None:
    """Load environment variables from a ``.env`` file without overriding existing values."""

    env_path: Path
    if path is None:
        env_path = _DEFAULT_ENV_PATH
    elif isinstance(path, Path):
        env_path = path
    else:
        env_path = Path(path)

    if not env_path.exists():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        key, _, value = line.partition("=")
        key = key.strip()
        if not key:
            continue

        if key in os.environ:
            continue

        normalized = value.strip()
        if (
            len(normalized) >= 2
            and normalized[0] in {'"', "'"}
            and normalized[-1] == normalized[0]
        ):
            normalized = normalized[1:-1]

        os.environ[key] = normalized


def _normalize_key(key: str) -> str:
    return key.replace("-", "_").lower()


@dataclass(frozen=True)
class TranslatorConfig:
    """Everything needed to talk to the completion endpoint."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    prompt: str = DEFAULT_PROMPT
    timeout: float = DEFAULT_TIMEOUT
    stream: bool = True
    top_p: float = DEFAULT_TOP_P

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TranslatorConfig":
        """Build a configuration from a merged settings mapping.

        Keys may use dashes or underscores. Empty values fall back to the
        defaults; a missing ``api_key`` raises :class:`ConfigError`.
        """

        values = {_normalize_key(str(key)): value for key, value in data.items()}

        api_key = values.get("api_key")
        if not api_key:
            raise ConfigError(
                "API key is missing. Set OPENAI_API_KEY, pass --api-key or add api_key to the config file."
            )

        try:
            timeout = float(_or_default(values.get("timeout"), DEFAULT_TIMEOUT))
            top_p = float(_or_default(values.get("top_p"), DEFAULT_TOP_P))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc

        stream = values.get("stream")
        return cls(
            api_key=str(api_key),
            base_url=str(values.get("base_url") or DEFAULT_BASE_URL),
            model=str(values.get("model") or DEFAULT_MODEL),
            prompt=str(values.get("prompt") or DEFAULT_PROMPT),
            timeout=timeout,
            stream=True if stream is None else _as_bool(stream),
            top_p=top_p,
        )

    @classmethod
    def from_env(cls, *, env_path: Optional[Path | str] = None) -> "TranslatorConfig":
        if env_path is not None:
            load_env_file(env_path)
        return cls.from_mapping(env_config())


def _or_default(value: object, default: float) -> object:
    if value is None or value == "":
        return default
    return value


def _as_bool(value: object) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
        raise ConfigError(f"Expected a boolean value, got {value!r}")
    return bool(value)


__all__ = [
    "ConfigError",
    "TranslatorConfig",
    "env_config",
    "load_config",
    "load_env_file",
    "merge_config",
]
