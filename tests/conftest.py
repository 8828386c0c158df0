"""Shared fixtures: throwaway git repositories."""

import os
import subprocess
import tempfile
from pathlib import Path

import pytest

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}


def git(cwd, *args) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        check=True,
        text=True,
        env={**os.environ, **GIT_ENV},
    )
    return result.stdout


def commit_file(cwd, name: str, content: str, message: str | None = None) -> None:
    path = Path(cwd) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    git(cwd, "add", name)
    git(cwd, "commit", "-m", message or f"update {name}")


@pytest.fixture
def git_repo():
    """Create a temporary git repo on branch main with an initial commit."""
    with tempfile.TemporaryDirectory() as tmp:
        repo = Path(tmp).resolve()
        git(repo, "init")
        git(repo, "checkout", "-b", "main")
        git(repo, "config", "user.name", "Test")
        git(repo, "config", "user.email", "test@test.com")
        commit_file(repo, "README.md", "# Test\n", "init")
        yield repo
