"""Share heavy, regenerable directories between the main checkout and new worktrees."""

import asyncio
import logging
import os
from pathlib import Path

from hive.db.models import SymlinkReport

logger = logging.getLogger(__name__)

# ecosystem -> (marker files, directories to share). No markers means always applicable.
PROJECT_SIGNATURES: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "node": (
        ("package.json",),
        ("node_modules", ".next", ".turbo", "dist", ".output", ".nuxt", ".svelte-kit"),
    ),
    "python": (
        ("requirements.txt", "pyproject.toml", "Pipfile", "setup.py"),
        ("venv", ".venv", "__pycache__", ".pytest_cache", ".mypy_cache"),
    ),
    "rust": (("Cargo.toml",), ("target",)),
    "go": (("go.mod",), ("vendor",)),
    "java": (("build.gradle", "pom.xml"), (".gradle", "build", "target")),
    "ios": (("Podfile",), ("Pods",)),
    "general": ((), ("build", ".cache")),
}


def detect_shared_dirs(repo_root: str | Path, custom: list[str] | None = None) -> list[str]:
    """Collect candidate directories for every signature whose markers exist."""
    root = Path(repo_root)
    dirs: list[str] = []
    for markers, candidates in PROJECT_SIGNATURES.values():
        if markers and not any((root / m).exists() for m in markers):
            continue
        for d in candidates:
            if d not in dirs:
                dirs.append(d)
    for d in custom or []:
        if d not in dirs:
            dirs.append(d)
    return dirs


def _walk_size(path: Path) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
    return total


async def dir_size(path: str | Path) -> int:
    """Total size in bytes of the files under path (0 if unreadable)."""
    try:
        return await asyncio.to_thread(_walk_size, Path(path))
    except OSError:
        return 0


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.2f} GB"


async def create_symlinks(
    repo_root: str | Path,
    worktree_path: str | Path,
    custom: list[str] | None = None,
) -> SymlinkReport:
    """Link shared directories from the main checkout into a worktree.

    Never raises: a directory that cannot be linked ends up in ``skipped``.
    """
    report = SymlinkReport()
    root = Path(repo_root)
    worktree = Path(worktree_path)

    try:
        candidates = detect_shared_dirs(root, custom)
    except OSError as e:
        report.warnings.append(f"Could not detect project type: {e}")
        logger.warning("Could not detect project type in %s: %s", root, e)
        return report

    linkable = []
    for d in candidates:
        source = root / d
        target = worktree / d
        if not source.exists() or target.exists() or target.is_symlink():
            report.skipped.append(d)
            continue
        linkable.append(d)

    sizes = await asyncio.gather(*(dir_size(root / d) for d in linkable))

    for d, size in zip(linkable, sizes):
        source = root / d
        target = worktree / d
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            relative = os.path.relpath(source, target.parent)
            os.symlink(relative, target, target_is_directory=True)
        except OSError as e:
            report.skipped.append(d)
            report.warnings.append(f"Could not link {d}: {e}")
            logger.warning("Could not symlink %s into %s: %s", d, worktree, e)
            continue
        report.created.append(d)
        report.saved_bytes += size

    return report
