"""CLI entry point for Space workspace initialization.

Usage:
    space init PROJECT [ISSUE_IDS...] SLUG
    space projects
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click

from spacecli.config import SpaceConfig, find_config, load_config
from spacecli.context import ContextGenerator
from spacecli.exceptions import (
    ConfigurationError,
    NotFoundError,
    SpaceError,
    ValidationError,
)
from spacecli.logging import get_logger, setup_logging
from spacecli.orchestrator import RunRequest, RunResult, WorkspaceOrchestrator
from spacecli.progress import ProgressTracker, TqdmProgressRenderer, progress_disabled
from spacecli.validation import GitHubIssueClient, ReferenceValidator, parse_issue_ids
from spacecli.workers import PostInitExecutor
from spacecli.worktrees import WorktreeProvisioner

if TYPE_CHECKING:
    from collections.abc import Callable

    from spacecli.config import ProjectConfig

logger = get_logger("cli")

STATUS_MARKS = {True: "ok", False: "failed"}


def build_orchestrator(
    config: SpaceConfig,
    project: ProjectConfig,
    confirm: Callable[[str], bool] | None,
    tracker: ProgressTracker,
) -> WorkspaceOrchestrator:
    """Wire the pipeline components for one project.

    Args:
        config: Loaded configuration.
        project: Project to initialize.
        confirm: Yes/no prompt, or None for non-interactive runs.
        tracker: Progress tracker shared with the renderer.

    Returns:
        A ready-to-run orchestrator.
    """
    settings = config.settings
    validator = None
    if project.issue_repo:
        validator = ReferenceValidator(
            GitHubIssueClient(project.issue_repo, timeout=settings.validation_timeout),
            timeout=settings.validation_timeout,
            max_workers=settings.validation_workers,
            timeout_retries=settings.validation_retries,
        )
    executor = PostInitExecutor(timeout=settings.post_init_timeout)
    executor.log_callback = get_logger("workers.post_init.output").info
    return WorkspaceOrchestrator(
        project=project,
        tracker=tracker,
        provisioner=WorktreeProvisioner(confirm=confirm, max_workers=settings.provision_workers),
        context_generator=ContextGenerator(project),
        post_init_executor=executor,
        validator=validator,
    )


def _load(config_path: Path | None) -> SpaceConfig:
    if config_path is None:
        config_path = find_config()
    return load_config(config_path)


def _print_summary(result: RunResult) -> None:
    context = result.context
    request = context.request
    header = "Dry run" if request.dry_run else "Workspace"
    click.echo(f"\n{header}: {context.workspace}")
    for record in context.repositories:
        status = record.worktree.status.value if record.worktree else "not provisioned"
        mark = STATUS_MARKS[record.ok]
        line = f"  [{mark}] {record.name}: {record.path} ({record.branch}, {status})"
        if record.incomplete:
            line += " INCOMPLETE"
        click.echo(line)
        if record.failure:
            click.echo(f"        {record.failure}")
        if request.dry_run and record.context is not None:
            for path in record.context.skipped:
                click.echo(f"        would write {path}")
        if request.dry_run and record.post_init is not None:
            for command in record.post_init.skipped:
                click.echo(f"        would run: {command}")


@click.group()
@click.version_option(package_name="space-cli")
def main() -> None:
    """Space - set up isolated multi-repository workspaces for a ticket."""
    pass


@main.command()
@click.argument("project_key")
@click.argument("args", nargs=-1, required=True)
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to space.yaml (auto-detected if not specified)",
)
@click.option("--dry-run", is_flag=True, help="Show what would be done without changing anything")
@click.option("--force", is_flag=True, help="Overwrite existing workspaces without prompting")
@click.option("--non-interactive", is_flag=True, help="Never prompt; conflicts become errors")
@click.option(
    "--allow-unverified",
    is_flag=True,
    help="Continue when a GitHub ID could not be checked in time",
)
@click.option("-v", "--verbose", is_flag=True, help="Also log to the console")
def init(
    project_key: str,
    args: tuple[str, ...],
    config_path: Path | None,
    dry_run: bool,
    force: bool,
    non_interactive: bool,
    allow_unverified: bool,
    verbose: bool,
) -> None:
    """Initialize a workspace: space init PROJECT [ISSUE_IDS...] SLUG.

    Creates one worktree per configured repository, copies env files,
    renders templates and runs the project's post-init commands.
    """
    setup_logging(console=verbose, level="DEBUG" if verbose else None)

    *raw_ids, slug = args
    interactive = not non_interactive and sys.stdin.isatty()

    try:
        issue_ids = parse_issue_ids(raw_ids)
        config = _load(config_path)
        project = config.get_project(project_key)
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except (ConfigurationError, NotFoundError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    tracker = ProgressTracker()
    renderer = None
    if not progress_disabled():
        renderer = TqdmProgressRenderer()
        tracker.subscribe(renderer)

    def confirm(prompt: str) -> bool:
        if renderer is not None:
            renderer.pause()
        try:
            return click.confirm(prompt, default=False)
        finally:
            if renderer is not None:
                renderer.resume()

    orchestrator = build_orchestrator(
        config, project, confirm if interactive else None, tracker
    )
    request = RunRequest(
        issue_ids=tuple(issue_ids),
        slug=slug,
        dry_run=dry_run,
        interactive=interactive,
        force=force,
        allow_unverified=allow_unverified,
    )

    try:
        result = orchestrator.run(request)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    except SpaceError as e:
        logger.exception("Unexpected pipeline error")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    _print_summary(result)
    if result.cancelled:
        click.echo("\nCancelled by user. Completed worktrees were left in place.", err=True)
    elif not result.succeeded:
        click.echo(f"\nFailed: {result.error}", err=True)
    elif dry_run:
        click.echo("\nDry run complete. No changes were made.")
    else:
        click.echo("\nWorkspace ready.")
    sys.exit(result.exit_code)


@main.command()
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to space.yaml (auto-detected if not specified)",
)
def projects(config_path: Path | None) -> None:
    """List configured projects and their repositories."""
    try:
        config = _load(config_path)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    for key in sorted(config.projects):
        project = config.projects[key]
        click.echo(f"{key}: {project.name}")
        for repo in project.repositories:
            marker = " (required)" if repo.required else ""
            click.echo(f"  - {repo.name}: {repo.source}{marker}")


if __name__ == "__main__":
    main()
