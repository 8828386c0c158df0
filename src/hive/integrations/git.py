"""Async git subprocess wrappers for worktree, branch, status and diff operations."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from hive.core.errors import HiveError
from hive.db.models import ChangeType, FileDiffStat

logger = logging.getLogger(__name__)


class GitError(HiveError):
    """Raised when a git command exits non-zero."""

    def __init__(self, message: str, args: list[str] | None = None, returncode: int | None = None,
                 stderr: str = ""):
        self.git_args = args or []
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


@dataclass
class WorktreeEntry:
    path: str
    branch: str
    head: str
    detached: bool = False
    is_bare: bool = False


async def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise GitError("git executable not found on PATH", args) from e
    except NotADirectoryError as e:
        raise GitError(f"Not a directory: {cwd}", args) from e

    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        err = stderr.decode("utf-8", errors="replace").strip()
        out = stdout.decode("utf-8", errors="replace").strip()
        raise GitError(
            f"git {' '.join(args)} failed: {err or out}",
            args,
            process.returncode,
            err or out,
        )
    return stdout.decode("utf-8", errors="replace")


async def is_repository(cwd: str | Path) -> bool:
    """Check whether a directory is inside a git work tree."""
    if not Path(cwd).is_dir():
        return False
    try:
        await run_git(["rev-parse", "--git-dir"], cwd=cwd)
        return True
    except GitError:
        return False


async def repo_root(cwd: str | Path) -> Path:
    """Get the top-level directory of the working copy containing cwd."""
    out = await run_git(["rev-parse", "--show-toplevel"], cwd=cwd)
    return Path(out.strip()).resolve()


async def main_repo_root(cwd: str | Path) -> Path:
    """Get the top-level of the main working copy, even when cwd is inside a linked worktree."""
    out = await run_git(["rev-parse", "--git-common-dir"], cwd=cwd)
    common = Path(out.strip())
    if not common.is_absolute():
        common = Path(cwd) / common
    common = common.resolve()
    if common.name == ".git":
        return common.parent
    return await repo_root(cwd)


async def worktree_add(
    repo_path: str | Path,
    worktree_path: str | Path,
    branch: str,
    base_branch: str,
) -> str:
    """Create a new worktree on a new branch rooted at base_branch."""
    return await run_git(
        ["worktree", "add", "-b", branch, str(worktree_path), base_branch],
        cwd=repo_path,
    )


def parse_worktree_list(output: str) -> list[WorktreeEntry]:
    """Parse `git worktree list --porcelain` output."""
    worktrees = []
    current: dict = {}

    def flush():
        if current.get("worktree"):
            head = current.get("HEAD", "")
            detached = current.get("detached", False)
            branch = current.get("branch", "").replace("refs/heads/", "", 1)
            worktrees.append(
                WorktreeEntry(
                    path=current["worktree"],
                    branch=(head or "detached") if detached else branch,
                    head=head,
                    detached=detached,
                    is_bare=current.get("bare", False),
                )
            )

    for line in output.split("\n"):
        if not line:
            flush()
            current = {}
            continue

        if line.startswith("worktree "):
            current["worktree"] = line[len("worktree "):]
        elif line.startswith("HEAD "):
            current["HEAD"] = line[len("HEAD "):]
        elif line.startswith("branch "):
            current["branch"] = line[len("branch "):]
        elif line == "detached":
            current["detached"] = True
        elif line == "bare":
            current["bare"] = True

    flush()
    return worktrees


async def worktree_list(repo_path: str | Path) -> list[WorktreeEntry]:
    """List all worktrees in porcelain format."""
    output = await run_git(["worktree", "list", "--porcelain"], cwd=repo_path)
    return parse_worktree_list(output)


async def worktree_remove(repo_path: str | Path, worktree_path: str | Path, force: bool = False) -> str:
    """Remove a git worktree."""
    args = ["worktree", "remove", str(worktree_path)]
    if force:
        args.append("--force")
    return await run_git(args, cwd=repo_path)


async def worktree_prune(repo_path: str | Path) -> str:
    """Drop administrative records of worktrees whose directories are gone."""
    return await run_git(["worktree", "prune"], cwd=repo_path)


async def branch_exists(repo_path: str | Path, branch: str) -> bool:
    """Check if a local branch exists."""
    try:
        await run_git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo_path)
        return True
    except GitError:
        return False


async def delete_branch(repo_path: str | Path, branch: str, force: bool = False) -> str:
    """Delete a branch."""
    flag = "-D" if force else "-d"
    return await run_git(["branch", flag, branch], cwd=repo_path)


async def local_branches(repo_path: str | Path) -> list[str]:
    out = await run_git(["for-each-ref", "--format=%(refname:short)", "refs/heads"], cwd=repo_path)
    return [line.strip() for line in out.splitlines() if line.strip()]


async def remote_branches(repo_path: str | Path) -> list[str]:
    out = await run_git(["for-each-ref", "--format=%(refname:short)", "refs/remotes"], cwd=repo_path)
    return [line.strip() for line in out.splitlines() if line.strip()]


async def has_remotes(repo_path: str | Path) -> bool:
    out = await run_git(["remote"], cwd=repo_path)
    return bool(out.strip())


async def get_current_branch(cwd: str | Path) -> str:
    """Get the current branch name (HEAD when detached)."""
    out = await run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return out.strip()


async def upstream_of(cwd: str | Path) -> str | None:
    """Get the upstream of the checked-out branch, or None if it tracks nothing."""
    try:
        out = await run_git(["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"], cwd=cwd)
    except GitError:
        return None
    return out.strip() or None


def parse_status_v2(raw: str) -> dict:
    """Parse `git status --porcelain=v2 --branch -z` into per-kind counts."""
    counts = {
        "modified": 0,
        "added": 0,
        "deleted": 0,
        "renamed": 0,
        "staged": 0,
        "conflicted": 0,
        "untracked": 0,
        "ahead": 0,
        "behind": 0,
        "entries": 0,
    }
    upstream = None

    tokens = raw.split("\0")
    i = 0
    while i < len(tokens):
        entry = tokens[i]
        i += 1
        if not entry:
            continue

        if entry.startswith("# "):
            parts = entry.split()
            if len(parts) >= 3 and parts[1] == "branch.upstream":
                upstream = parts[2]
            elif len(parts) >= 4 and parts[1] == "branch.ab":
                counts["ahead"] = _safe_int(parts[2].lstrip("+"))
                counts["behind"] = _safe_int(parts[3].lstrip("-"))
            continue

        kind = entry[0]
        if kind in ("1", "2"):
            xy = entry.split(" ", 2)[1]
            x, y = xy[0], xy[1]
            counts["entries"] += 1
            if x != ".":
                counts["staged"] += 1
            if "M" in (x, y):
                counts["modified"] += 1
            if x == "A":
                counts["added"] += 1
            if "D" in (x, y):
                counts["deleted"] += 1
            if kind == "2":
                counts["renamed"] += 1
                i += 1  # original path follows as its own field
        elif kind == "u":
            counts["entries"] += 1
            counts["conflicted"] += 1
        elif kind == "?":
            counts["entries"] += 1
            counts["untracked"] += 1

    if upstream is None:
        counts["ahead"] = counts["behind"] = 0
    return counts


async def get_status(cwd: str | Path) -> dict:
    """Get parsed porcelain v2 status counts for a working directory."""
    raw = await run_git(["status", "--porcelain=v2", "--branch", "-z"], cwd=cwd)
    return parse_status_v2(raw)


def parse_numstat(raw: str) -> list[FileDiffStat]:
    """Parse `git diff --numstat -z` output."""
    stats = []
    tokens = raw.split("\0")
    i = 0
    while i < len(tokens):
        token = tokens[i]
        i += 1
        if not token:
            continue
        parts = token.split("\t", 2)
        if len(parts) != 3:
            continue
        ins, dels, path = parts
        if path == "":
            # rename: old and new paths follow as separate fields
            path = tokens[i + 1] if i + 1 < len(tokens) else ""
            i += 2
        binary = ins == "-" or dels == "-"
        stats.append(
            FileDiffStat(
                file=path,
                insertions=0 if binary else _safe_int(ins),
                deletions=0 if binary else _safe_int(dels),
                binary=binary,
            )
        )
    return stats


_NAME_STATUS_TYPES = {
    "A": ChangeType.ADDED,
    "C": ChangeType.ADDED,
    "D": ChangeType.DELETED,
    "R": ChangeType.RENAMED,
}


def parse_name_status(raw: str) -> dict[str, ChangeType]:
    """Parse `git diff --name-status -z` output into path -> change type."""
    types: dict[str, ChangeType] = {}
    tokens = raw.split("\0")
    i = 0
    while i < len(tokens):
        code = tokens[i]
        i += 1
        if not code:
            continue
        letter = code[0]
        if letter in ("R", "C"):
            path = tokens[i + 1] if i + 1 < len(tokens) else ""
            i += 2
        else:
            path = tokens[i] if i < len(tokens) else ""
            i += 1
        if path:
            types[path] = _NAME_STATUS_TYPES.get(letter, ChangeType.MODIFIED)
    return types


async def diff_stats(cwd: str | Path, range_spec: str) -> list[FileDiffStat]:
    """Get per-file insertions/deletions and change types for a revision range."""
    numstat, name_status = await asyncio.gather(
        run_git(["diff", "--numstat", "-z", range_spec], cwd=cwd),
        run_git(["diff", "--name-status", "-z", range_spec], cwd=cwd),
    )
    types = parse_name_status(name_status)
    files = parse_numstat(numstat)
    for f in files:
        f.change_type = types.get(f.file, ChangeType.MODIFIED)
    return files


async def diff_text(cwd: str | Path, range_spec: str) -> str:
    return await run_git(["diff", range_spec], cwd=cwd)


async def conflicted_files(cwd: str | Path) -> list[str]:
    """List paths with unresolved merge conflicts."""
    out = await run_git(["diff", "--name-only", "--diff-filter=U"], cwd=cwd)
    return [line for line in out.splitlines() if line]


async def last_commit_time(cwd: str | Path) -> int | None:
    """Get the committer timestamp of HEAD, or None if it cannot be read."""
    try:
        out = await run_git(["log", "-1", "--format=%ct"], cwd=cwd)
    except GitError:
        return None
    value = out.strip()
    return int(value) if value.isdigit() else None


def _safe_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
