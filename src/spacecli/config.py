"""Configuration loading for Space projects.

The loader runs at the CLI edge only. It turns the YAML file into frozen
dataclasses that are passed into the pipeline; nothing inside the pipeline
looks configuration up on its own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from spacecli.exceptions import ConfigurationError, NotFoundError
from spacecli.naming import (
    DEFAULT_BRANCH_TEMPLATE,
    DEFAULT_PATH_TEMPLATE,
    validate_project_key,
)

CONFIG_ENV_VAR = "SPACE_CONFIG"
LOCAL_CONFIG_NAME = "space.yaml"
HOME_CONFIG_NAME = ".space-config.yaml"


def _resolve(value: str | Path, base: Path) -> Path:
    """Expand ``~`` and resolve a relative path against ``base``."""
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return path


def _file_entries(key: str, data: dict[str, Any], field_name: str) -> list[dict[str, Any]]:
    """Normalize an ``env_files`` or ``templates`` list to mappings with a source.

    Raises:
        ConfigurationError: If the list or one of its entries is malformed.
    """
    raw = data.get(field_name) or []
    if not isinstance(raw, list):
        raise ConfigurationError(f"Project '{key}': {field_name} must be a list")
    entries = []
    for entry in raw:
        if isinstance(entry, str):
            entry = {"source": entry}
        if not isinstance(entry, dict):
            raise ConfigurationError(
                f"Project '{key}': {field_name} entries must be paths or mappings"
            )
        if not entry.get("source"):
            raise ConfigurationError(
                f"Project '{key}': {field_name} entry is missing required field: source"
            )
        entries.append(entry)
    return entries


@dataclass(frozen=True)
class GlobalSettings:
    """Settings shared by all projects."""

    workspace_base: Path = field(default_factory=lambda: Path.home() / "src" / "workspaces")
    src_dir: Path = field(default_factory=lambda: Path.home() / "src")
    env_files_dir: Path | None = None
    templates_dir: Path | None = None
    validation_timeout: float = 10.0
    validation_workers: int = 5
    validation_retries: int = 0
    provision_workers: int = 4
    post_init_timeout: float = 180.0

    @classmethod
    def from_dict(cls, data: dict[str, Any], root_path: Path) -> GlobalSettings:
        """Create settings from the ``global`` mapping.

        Args:
            data: The ``global`` section of the YAML file.
            root_path: Directory containing the config file.

        Raises:
            ConfigurationError: If a numeric setting is not a number.
        """
        defaults = cls()
        src_dir = _resolve(data["src_dir"], root_path) if "src_dir" in data else defaults.src_dir
        try:
            return cls(
                workspace_base=(
                    _resolve(data["workspace_base"], src_dir)
                    if "workspace_base" in data
                    else defaults.workspace_base
                ),
                src_dir=src_dir,
                env_files_dir=(
                    _resolve(data["env_files_dir"], root_path)
                    if data.get("env_files_dir")
                    else None
                ),
                templates_dir=(
                    _resolve(data["templates_dir"], root_path)
                    if data.get("templates_dir")
                    else None
                ),
                validation_timeout=float(
                    data.get("validation_timeout", defaults.validation_timeout)
                ),
                validation_workers=int(data.get("validation_workers", defaults.validation_workers)),
                validation_retries=int(data.get("validation_retries", defaults.validation_retries)),
                provision_workers=int(data.get("provision_workers", defaults.provision_workers)),
                post_init_timeout=float(data.get("post_init_timeout", defaults.post_init_timeout)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid global setting: {e}") from e


@dataclass(frozen=True)
class RepositorySpec:
    """One repository to provision as a worktree.

    Attributes:
        name: Short name, also the default worktree directory name.
        source: Path of the local clone the worktree is created from.
        path_template: Target worktree path template.
        branch_template: Branch naming rule.
        base_branch: Branch new worktree branches start from.
        required: Whether this repository's failure fails the whole run.
    """

    name: str
    source: Path
    path_template: str = DEFAULT_PATH_TEMPLATE
    branch_template: str = DEFAULT_BRANCH_TEMPLATE
    base_branch: str = "main"
    required: bool = False

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], src_dir: Path, required: bool = False
    ) -> RepositorySpec:
        missing = [f for f in ("name", "source") if not data.get(f)]
        if missing:
            raise ConfigurationError(f"Repository is missing required fields: {', '.join(missing)}")
        return cls(
            name=validate_project_key(str(data["name"])),
            source=_resolve(data["source"], src_dir),
            path_template=data.get("path", DEFAULT_PATH_TEMPLATE),
            branch_template=data.get("branch", DEFAULT_BRANCH_TEMPLATE),
            base_branch=data.get("base_branch", "main"),
            required=bool(data.get("required", required)),
        )


@dataclass(frozen=True)
class EnvFileSpec:
    """An environment file copied into worktrees."""

    source: Path
    target: str = ".env.local"
    repository: str | None = None

    def applies_to(self, repository: str) -> bool:
        return self.repository is None or self.repository == repository


@dataclass(frozen=True)
class TemplateSpec:
    """A template rendered into each worktree root."""

    source: Path
    target: str


@dataclass(frozen=True)
class ProjectConfig:
    """Resolved configuration of one project. Immutable once loaded."""

    key: str
    name: str
    repositories: tuple[RepositorySpec, ...]
    workspace_base: Path
    issue_repo: str | None = None
    post_init: tuple[str, ...] = ()
    env_files: tuple[EnvFileSpec, ...] = ()
    templates: tuple[TemplateSpec, ...] = ()

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any], settings: GlobalSettings) -> ProjectConfig:
        """Create a project from its mapping under ``projects``.

        Args:
            key: Project key (the mapping key).
            data: Project mapping.
            settings: Global settings used to resolve relative paths.

        Raises:
            ConfigurationError: If required fields are missing or invalid.
        """
        key = validate_project_key(key)
        repos_data = data.get("repositories")
        if not repos_data or not isinstance(repos_data, list):
            raise ConfigurationError(f"Project '{key}' must list at least one repository")

        required = data.get("required", [])
        repositories = []
        for repo_data in repos_data:
            if not isinstance(repo_data, dict):
                raise ConfigurationError(f"Project '{key}': repository entries must be mappings")
            is_required = required == "all" or (
                isinstance(required, list) and repo_data.get("name") in required
            )
            repositories.append(
                RepositorySpec.from_dict(repo_data, settings.src_dir, required=is_required)
            )

        names = [r.name for r in repositories]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Project '{key}' repeats repository names: {', '.join(duplicates)}"
            )

        post_init = data.get("post_init", data.get("post-init", []))
        if isinstance(post_init, str):
            post_init = [post_init]

        env_base = settings.env_files_dir or settings.src_dir
        env_files = []
        for entry in _file_entries(key, data, "env_files"):
            if entry.get("repository") and entry["repository"] not in names:
                raise ConfigurationError(
                    f"Project '{key}': env file targets unknown repository '{entry['repository']}'"
                )
            env_files.append(
                EnvFileSpec(
                    source=_resolve(entry["source"], env_base),
                    target=entry.get("target", ".env.local"),
                    repository=entry.get("repository"),
                )
            )

        template_base = settings.templates_dir or settings.src_dir
        templates = []
        for entry in _file_entries(key, data, "templates"):
            source = _resolve(entry["source"], template_base)
            templates.append(TemplateSpec(source=source, target=entry.get("target", source.name)))

        workspace_base = (
            _resolve(data["workspace_base"], settings.src_dir)
            if data.get("workspace_base")
            else settings.workspace_base
        )

        return cls(
            key=key,
            name=data.get("name", key),
            repositories=tuple(repositories),
            workspace_base=workspace_base,
            issue_repo=data.get("issue_repo"),
            post_init=tuple(str(c) for c in post_init),
            env_files=tuple(env_files),
            templates=tuple(templates),
        )

    def repository(self, name: str) -> RepositorySpec:
        """Get a repository spec by name.

        Raises:
            NotFoundError: If the project has no such repository.
        """
        for repo in self.repositories:
            if repo.name == name:
                return repo
        raise NotFoundError(f"Repository '{name}' not found in project '{self.key}'")


@dataclass(frozen=True)
class SpaceConfig:
    """The whole configuration file."""

    settings: GlobalSettings
    projects: dict[str, ProjectConfig]
    root_path: Path = field(default_factory=Path)

    @classmethod
    def from_dict(cls, data: dict[str, Any], root_path: Path) -> SpaceConfig:
        projects_data = data.get("projects")
        if not projects_data or not isinstance(projects_data, dict):
            raise ConfigurationError("Missing required section: projects")

        settings = GlobalSettings.from_dict(data.get("global") or {}, root_path)
        projects = {
            key: ProjectConfig.from_dict(str(key), project_data or {}, settings)
            for key, project_data in projects_data.items()
        }
        return cls(settings=settings, projects=projects, root_path=root_path)

    def get_project(self, key: str) -> ProjectConfig:
        """Get a project by key.

        Raises:
            NotFoundError: If the key is not configured.
        """
        try:
            return self.projects[key]
        except KeyError:
            available = ", ".join(sorted(self.projects)) or "none"
            raise NotFoundError(f"Project '{key}' not found. Available: {available}") from None


def load_config(config_path: Path | str) -> SpaceConfig:
    """Load Space configuration from a YAML file.

    Args:
        config_path: Path to the YAML file.

    Returns:
        Parsed configuration object.

    Raises:
        ConfigurationError: If the file doesn't exist or is invalid.
    """
    config_path = Path(config_path).expanduser()

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a YAML mapping, got {type(data).__name__}"
        )

    return SpaceConfig.from_dict(data, config_path.parent.absolute())


def find_config(start_path: Path | str | None = None) -> Path:
    """Locate the configuration file.

    Checks SPACE_CONFIG, then ``space.yaml`` in the start directory and its
    parents, then ``~/.space-config.yaml``.

    Raises:
        ConfigurationError: If no config file is found.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()

    current = Path(start_path) if start_path is not None else Path.cwd()
    current = current.absolute()
    while True:
        candidate = current / LOCAL_CONFIG_NAME
        if candidate.exists():
            return candidate
        if current.parent == current:
            break
        current = current.parent

    home_config = Path.home() / HOME_CONFIG_NAME
    if home_config.exists():
        return home_config

    raise ConfigurationError(
        f"No configuration found. Create {LOCAL_CONFIG_NAME} or ~/{HOME_CONFIG_NAME}, "
        f"or set {CONFIG_ENV_VAR}."
    )
