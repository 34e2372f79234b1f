"""Shared pytest fixtures and configuration."""

import shutil
import subprocess
from pathlib import Path

import pytest


# Register custom markers
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")
    config.addinivalue_line("markers", "integration: component interaction tests")
    config.addinivalue_line("markers", "e2e: full pipeline tests")


# Shared fixtures


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture
def make_repo(tmp_path: Path):
    """Factory creating local git repositories with one commit on main."""
    if shutil.which("git") is None:
        pytest.skip("git not available")

    def factory(name: str) -> Path:
        repo = tmp_path / "src" / name
        repo.mkdir(parents=True)
        _git(repo, "init", "-b", "main")
        _git(repo, "config", "user.email", "test@example.com")
        _git(repo, "config", "user.name", "Test")
        (repo / "README.md").write_text(f"# {name}\n")
        _git(repo, "add", ".")
        _git(repo, "commit", "-m", "Initial commit")
        return repo

    return factory


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep log files and progress output out of the user's home during tests."""
    monkeypatch.setenv("SPACE_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("SPACE_DISABLE_PROGRESS", "1")
