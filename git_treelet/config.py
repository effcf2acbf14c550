"""
Configuration handling for git_treelet.

Treelet settings live in the monorepo's own git configuration as
``treelet.<name>.<key>`` entries. This module defines the schema for them,
the per-invocation run options, and the store that reads and writes them.
"""

import re
from pathlib import PurePosixPath

from git import Repo
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import (
    InvalidConfigKeyError,
    InvalidTreeletNameError,
    NotConfiguredError,
    PathExistsError,
)

SECTION_PREFIX = "treelet"

# Config key -> model field
CONFIG_KEYS = {
    "remote": "remote",
    "remote-ref": "remote_ref",
    "path": "path",
    "force-author-name": "force_author_name",
    "force-author-email": "force_author_email",
    "last-sync": "last_sync",
}

# Keys managed by the engines, never set by hand
SYSTEM_KEYS = frozenset({"last-sync"})

_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9._-]*$")


def validate_treelet_name(name: str) -> str:
    """Check that a name is usable as a config subsection and ref component."""
    if not name or not _NAME_RE.match(name) or ".." in name or name.endswith((".", ".lock")):
        raise InvalidTreeletNameError(f"Invalid treelet name: {name!r}")
    return name


def normalize_path(path: str) -> str:
    """Normalize a repo-relative path to POSIX form without ./ or trailing /."""
    cleaned = path.strip().replace("\\", "/")
    pure = PurePosixPath(cleaned)
    if pure.is_absolute():
        raise ValueError(f"Treelet path must be relative to the repository root: {path}")
    parts = [p for p in pure.parts if p not in ("", ".")]
    if ".." in parts:
        raise ValueError(f"Treelet path cannot contain '..': {path}")
    if not parts:
        raise ValueError("Treelet path cannot be the repository root")
    return "/".join(parts)


def paths_overlap(a: str, b: str) -> bool:
    """True when one path equals or contains the other."""
    return a == b or a.startswith(b + "/") or b.startswith(a + "/")


class TreeletConfig(BaseModel):
    """Settings for a single treelet."""

    name: str = Field(..., description="Treelet name (config subsection)")
    remote: str = Field(..., description="URL or path of the external repository")
    remote_ref: str = Field(..., description="Branch or ref in the external repository")
    # Path relative to the monorepo root
    path: str = Field(..., description="Subdirectory holding the treelet")
    force_author_name: str | None = Field(
        None, description="Author name to stamp on pushed commits"
    )
    force_author_email: str | None = Field(
        None, description="Author email to stamp on pushed commits"
    )
    last_sync: str | None = Field(
        None, description="Upstream commit of the most recent synchronization"
    )

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        try:
            return validate_treelet_name(value)
        except InvalidTreeletNameError as e:
            raise ValueError(str(e)) from e

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        return normalize_path(value)

    def to_config_items(self) -> dict[str, str]:
        """Config key/value pairs for the fields that are set."""
        items = {}
        for key, field in CONFIG_KEYS.items():
            value = getattr(self, field)
            if value is not None:
                items[key] = value
        return items


class RunOptions(BaseModel):
    """Options for a single command invocation."""

    model_config = ConfigDict(frozen=True)

    verbose: bool = False
    squash: bool = False
    force_author_name: str | None = None
    force_author_email: str | None = None


class ConfigStore:
    """Reads and writes treelet settings in a repository's git config."""

    def __init__(self, repo: Repo):
        self.repo = repo

    @staticmethod
    def _section(name: str) -> str:
        return f'{SECTION_PREFIX} "{name}"'

    def names(self) -> list[str]:
        """Names of all configured treelets, sorted."""
        pattern = re.compile(rf'^{SECTION_PREFIX} "(.+)"$')
        reader = self.repo.config_reader("repository")
        found = []
        for section in reader.sections():
            match = pattern.match(section)
            if match:
                found.append(match.group(1))
        return sorted(found)

    def exists(self, name: str) -> bool:
        reader = self.repo.config_reader("repository")
        return reader.has_section(self._section(name))

    def load(self, name: str) -> TreeletConfig:
        """Load a treelet's configuration."""
        validate_treelet_name(name)
        reader = self.repo.config_reader("repository")
        section = self._section(name)
        if not reader.has_section(section):
            raise NotConfiguredError(f"No treelet named '{name}' is configured")

        data: dict[str, str] = {"name": name}
        for key, field in CONFIG_KEYS.items():
            if reader.has_option(section, key):
                data[field] = reader.get(section, key)

        try:
            return TreeletConfig.model_validate(data)
        except ValidationError as e:
            raise NotConfiguredError(
                f"Treelet '{name}' has an incomplete or invalid configuration: {e}"
            ) from e

    def load_all(self) -> list[TreeletConfig]:
        return [self.load(name) for name in self.names()]

    def require_path_free(self, path: str, exclude: str | None = None) -> None:
        """Raise PathExistsError when path equals, contains or lies inside another treelet's path."""
        for other in self.load_all():
            if other.name != exclude and paths_overlap(other.path, path):
                raise PathExistsError(
                    f"Path '{path}' overlaps treelet '{other.name}' at '{other.path}'"
                )

    def save(self, config: TreeletConfig) -> None:
        """Write every set field of a treelet's configuration."""
        section = self._section(config.name)
        with self.repo.config_writer("repository") as writer:
            for key, value in config.to_config_items().items():
                writer.set_value(section, key, value)

    def get(self, name: str, key: str) -> str | None:
        """Get a single raw value, or None when it is unset."""
        if key not in CONFIG_KEYS:
            raise InvalidConfigKeyError(f"Unknown config key: {key}")
        config = self.load(name)
        return getattr(config, CONFIG_KEYS[key])

    def set(self, name: str, key: str, value: str) -> TreeletConfig:
        """Set a user-editable key, validating the resulting configuration."""
        if key not in CONFIG_KEYS:
            raise InvalidConfigKeyError(f"Unknown config key: {key}")
        if key in SYSTEM_KEYS:
            raise InvalidConfigKeyError(f"Config key '{key}' is managed by git-treelet")

        current = self.load(name)
        data = current.model_dump()
        data[CONFIG_KEYS[key]] = value
        try:
            updated = TreeletConfig.model_validate(data)
        except ValidationError as e:
            raise InvalidConfigKeyError(f"Invalid value for '{key}': {value}") from e

        if key == "path":
            self.require_path_free(updated.path, exclude=name)

        with self.repo.config_writer("repository") as writer:
            writer.set_value(self._section(name), key, getattr(updated, CONFIG_KEYS[key]))
        return updated

    def set_last_sync(self, name: str, commit_sha: str) -> None:
        with self.repo.config_writer("repository") as writer:
            writer.set_value(self._section(name), "last-sync", commit_sha)

    def remove(self, name: str) -> None:
        """Delete a treelet's configuration section."""
        validate_treelet_name(name)
        if not self.exists(name):
            raise NotConfiguredError(f"No treelet named '{name}' is configured")
        with self.repo.config_writer("repository") as writer:
            writer.remove_section(self._section(name))
