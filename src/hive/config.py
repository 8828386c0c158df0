"""Configuration: process settings from the environment and the persisted project config."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, get_args

from pydantic import BaseModel, Field, PositiveInt
from pydantic import ValidationError as PydanticValidationError

from hive.core.errors import ConfigKeyError, ValidationError
from hive.db.store import DocumentError, read_document, write_document

STATE_DIR_NAME = ".hive"
CONFIG_FILE_NAME = "config.json"
TASKS_FILE_NAME = "tasks.json"

EditorName = Literal["code", "cursor", "claude", "terminal"]
AIProvider = Literal["anthropic", "openai"]
EDITORS = get_args(EditorName)
AI_PROVIDERS = get_args(AIProvider)
DEFAULT_AI_MODELS = {
    "anthropic": "claude-sonnet-4-5",
    "openai": "gpt-5",
}


@dataclass
class Settings:
    repo_path: Path = field(default_factory=lambda: Path.cwd())
    state_dir: str = STATE_DIR_NAME

    @classmethod
    def from_env(cls) -> "Settings":
        settings = cls()

        if repo := os.environ.get("HIVE_REPO_PATH"):
            settings.repo_path = Path(repo)

        if state_dir := os.environ.get("HIVE_STATE_DIR"):
            settings.state_dir = state_dir

        return settings


def get_settings() -> Settings:
    return Settings.from_env()


# Documents are read as written: "yes" is not a bool and true is not a day count.
_DOCUMENT_MODEL_CONFIG = {"extra": "forbid", "populate_by_name": True, "strict": True}


class AIConfig(BaseModel):
    enabled: bool = False
    provider: AIProvider = "anthropic"
    api_key: str | None = Field(default=None, alias="apiKey")
    model: str = Field(default=DEFAULT_AI_MODELS["anthropic"], min_length=1)
    auto_review: bool = Field(default=False, alias="autoReview")
    auto_resolve_conflicts: bool = Field(default=False, alias="autoResolveConflicts")

    model_config = _DOCUMENT_MODEL_CONFIG


class HiveConfig(BaseModel):
    default_base_branch: str = Field(default="main", alias="defaultBaseBranch", min_length=1)
    default_editor: EditorName = Field(default="code", alias="defaultEditor")
    worktree_dir: str = Field(default=".worktrees", alias="worktreeDir", min_length=1)
    auto_symlink: bool = Field(default=True, alias="autoSymlink")
    custom_symlinks: list[str] = Field(default_factory=list, alias="customSymlinks")
    auto_clean_stale_days: PositiveInt | None = Field(default=None, alias="autoCleanStaleDays")
    ai: AIConfig = Field(default_factory=AIConfig)

    model_config = _DOCUMENT_MODEL_CONFIG

    def to_document(self) -> dict:
        """Serialize using the persisted camelCase keys."""
        return self.model_dump(by_alias=True)


def _location(error) -> str:
    return ".".join(str(part) for part in error["loc"])


def parse_config(data: dict) -> HiveConfig:
    """Validate a persisted config document. Missing keys take their defaults."""
    try:
        return HiveConfig.model_validate(data)
    except PydanticValidationError as e:
        errors = e.errors()
        unknown = sorted(_location(err) for err in errors if err["type"] == "extra_forbidden")
        if unknown:
            raise ConfigKeyError(f"Unknown config keys: {', '.join(unknown)}") from e
        details = "; ".join(f"{_location(err)}: {err['msg']}" for err in errors)
        raise ValidationError(f"Invalid config: {details}") from e


# ── Command-line values ───────────────────────────────────────────────────────
# `hive config set` receives strings; these turn them into document values,
# which parse_config then validates like any other document.


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    raise ValidationError(f"Expected true or false, got {raw!r}")


def _parse_str(raw: str) -> str:
    return raw.strip()


def _parse_choice(raw: str) -> str:
    return raw.strip().lower()


def _parse_optional_str(raw: str) -> str | None:
    return raw.strip() or None


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_optional_days(raw: str) -> int | None:
    value = raw.strip().lower()
    if value in ("", "null", "none", "off"):
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValidationError(f"Expected a number of days, got {raw!r}") from e


CONFIG_KEYS = {
    "defaultBaseBranch": _parse_str,
    "defaultEditor": _parse_choice,
    "worktreeDir": _parse_str,
    "autoSymlink": _parse_bool,
    "customSymlinks": _parse_list,
    "autoCleanStaleDays": _parse_optional_days,
    "ai.enabled": _parse_bool,
    "ai.provider": _parse_choice,
    "ai.apiKey": _parse_optional_str,
    "ai.model": _parse_str,
    "ai.autoReview": _parse_bool,
    "ai.autoResolveConflicts": _parse_bool,
}

SECRET_KEYS = {"ai.apiKey"}


class ConfigStore:
    """Project-local config document with defaults filled in on first touch."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> HiveConfig:
        """Read the config, writing defaults for any missing keys."""
        try:
            data = read_document(self.path)
        except DocumentError as e:
            raise ValidationError(str(e)) from e

        config = parse_config(data or {})
        normalized = config.to_document()
        if data != normalized:
            write_document(self.path, normalized)
        return config

    def save(self, config: HiveConfig) -> None:
        write_document(self.path, config.to_document())

    def get_value(self, key: str):
        """Read a single value by its dotted key."""
        self._lookup(key)
        value = self.load().to_document()
        for part in key.split("."):
            value = value[part]
        return value

    def set_value(self, key: str, raw: str) -> HiveConfig:
        """Parse a raw string for a known key and persist it."""
        value = self._lookup(key)(raw)
        current = self.load()
        data = current.to_document()
        if key == "ai.provider" and value != current.ai.provider:
            data["ai"]["model"] = DEFAULT_AI_MODELS.get(value, current.ai.model)

        *parents, name = key.split(".")
        target = data
        for part in parents:
            target = target[part]
        target[name] = value

        config = parse_config(data)
        self.save(config)
        return config

    def reset(self) -> HiveConfig:
        """Overwrite the document with defaults, whatever it held before."""
        config = HiveConfig()
        self.save(config)
        return config

    @staticmethod
    def _lookup(key: str):
        try:
            return CONFIG_KEYS[key]
        except KeyError:
            raise ConfigKeyError(
                f"Unknown config key: {key}. Valid keys: {', '.join(CONFIG_KEYS)}"
            ) from None
