"""Git worktree lifecycle management for hive tasks."""

import logging
from pathlib import Path

from hive.config import HiveConfig
from hive.core.errors import AlreadyExistsError, NotARepositoryError, NotFoundError, ValidationError
from hive.core.symlinks import create_symlinks
from hive.core.tasks import SLUG_RE, branch_for, worktree_path_for
from hive.db.models import (
    CreatedWorktree,
    DiffStats,
    MergeResult,
    RemovedWorktree,
    SymlinkReport,
    WorktreeInfo,
    WorktreeStatus,
)
from hive.integrations import git
from hive.integrations.git import GitError

logger = logging.getLogger(__name__)

MAIN_SLUG = "main"


class WorktreeManager:
    """Creates, inspects, merges and removes the worktrees backing tasks.

    All paths are derived from the main working copy's root, the configured
    worktree directory and the task slug.
    """

    def __init__(self, repo_root: str | Path, config: HiveConfig):
        self.repo_root = Path(repo_root).resolve()
        self.config = config

    @classmethod
    async def open(cls, path: str | Path, config: HiveConfig) -> "WorktreeManager":
        """Build a manager for the repository containing path."""
        if not await git.is_repository(path):
            raise NotARepositoryError(f"Not a git repository: {path}")
        return cls(await git.main_repo_root(path), config)

    @property
    def worktrees_root(self) -> Path:
        return self.repo_root / self.config.worktree_dir

    def path_for(self, slug: str) -> Path:
        return worktree_path_for(self.repo_root, self.config.worktree_dir, slug)

    def _slug_for_path(self, path: str) -> str:
        resolved = Path(path).resolve()
        if resolved == self.repo_root:
            return MAIN_SLUG
        try:
            return resolved.relative_to(self.worktrees_root.resolve()).as_posix()
        except ValueError:
            return resolved.name

    async def default_branch(self) -> str:
        """Pick main, then master (remote first, then local), then the current branch."""
        try:
            if await git.has_remotes(self.repo_root):
                remote = await git.remote_branches(self.repo_root)
                if "origin/main" in remote:
                    return "main"
                if "origin/master" in remote:
                    return "master"

            local = await git.local_branches(self.repo_root)
            if "main" in local:
                return "main"
            if "master" in local:
                return "master"

            return await git.get_current_branch(self.repo_root)
        except GitError as e:
            raise GitError(f"Failed to determine default branch: {e}", e.git_args, e.returncode, e.stderr) from e

    async def list_worktrees(self) -> list[WorktreeInfo]:
        """List every worktree of the repository, the main working copy included."""
        entries = await git.worktree_list(self.repo_root)
        return [
            WorktreeInfo(
                slug=self._slug_for_path(e.path),
                path=e.path,
                branch=e.branch,
                head=e.head,
                detached=e.detached,
                is_bare=e.is_bare,
            )
            for e in entries
        ]

    async def find_worktree(self, slug: str) -> WorktreeInfo:
        for wt in await self.list_worktrees():
            if wt.slug == slug:
                return wt
        raise NotFoundError(f"Worktree {slug} not found")

    async def create_worktree(self, slug: str, base_branch: str | None = None) -> CreatedWorktree:
        """Create branch hive/<slug> from base_branch and check it out in a new worktree."""
        if not SLUG_RE.match(slug or ""):
            raise ValidationError(f"Invalid task slug: {slug!r}")

        path = self.path_for(slug)
        branch = branch_for(slug)

        if path.exists() or path.is_symlink():
            raise AlreadyExistsError(f"Worktree already exists at {path}")
        if await git.branch_exists(self.repo_root, branch):
            raise AlreadyExistsError(f"Branch {branch} already exists")

        base = base_branch or await self.default_branch()
        path.parent.mkdir(parents=True, exist_ok=True)
        await git.worktree_add(self.repo_root, path, branch, base)
        logger.info("Created worktree %s on %s from %s", path, branch, base)

        symlinks = SymlinkReport()
        if self.config.auto_symlink:
            symlinks = await create_symlinks(self.repo_root, path, self.config.custom_symlinks)

        return CreatedWorktree(slug=slug, path=str(path), branch=branch, base_branch=base, symlinks=symlinks)

    async def remove_worktree(self, slug: str) -> RemovedWorktree:
        """Force-remove a task's worktree, then delete its branch if possible."""
        wt = await self.find_worktree(slug)
        if Path(wt.path).resolve() == self.repo_root:
            raise ValidationError("Refusing to remove the main working copy")

        if Path(wt.path).exists():
            await git.worktree_remove(self.repo_root, wt.path, force=True)
        else:
            await git.worktree_prune(self.repo_root)
        logger.info("Removed worktree %s", wt.path)

        branch = branch_for(slug)
        result = RemovedWorktree(slug=slug, path=wt.path, branch=branch)
        try:
            if await git.branch_exists(self.repo_root, branch):
                await git.delete_branch(self.repo_root, branch, force=True)
                result.branch_deleted = True
        except GitError as e:
            logger.warning("Could not delete branch %s: %s", branch, e)
            result.warnings.append(f"Could not delete branch {branch}: {e}")
        return result

    async def prune(self) -> None:
        await git.worktree_prune(self.repo_root)

    async def get_worktree_status(self, slug: str) -> WorktreeStatus:
        wt = await self.find_worktree(slug)
        counts = await git.get_status(wt.path)
        return WorktreeStatus(
            slug=slug,
            path=wt.path,
            branch=wt.branch,
            is_clean=counts["entries"] == 0,
            **counts,
        )

    async def has_uncommitted_changes(self, slug: str) -> bool:
        status = await self.get_worktree_status(slug)
        return not status.is_clean

    async def get_diff_stats(self, slug: str, base_branch: str | None = None) -> DiffStats:
        """Per-file stats for commits on the task branch that are not on base_branch."""
        wt = await self.find_worktree(slug)
        base = base_branch or await self.default_branch()
        files = await git.diff_stats(wt.path, f"{base}...HEAD")
        return DiffStats(files=files)

    async def get_full_diff(self, slug: str, base_branch: str | None = None) -> str:
        wt = await self.find_worktree(slug)
        base = base_branch or await self.default_branch()
        return await git.diff_text(wt.path, f"{base}...HEAD")

    async def list_branches(self) -> list[str]:
        return await git.local_branches(self.repo_root)

    def read_main_file(self, file_path: str) -> str:
        """Read a file from the main working copy, never from a task worktree."""
        return (self.repo_root / file_path).read_text(encoding="utf-8")

    async def merge_branch(self, slug: str, target_branch: str | None = None) -> MergeResult:
        """Merge a task branch into target_branch in the main working copy.

        Conflicts are returned, not raised, and the merge is left in progress
        so the user can resolve it. Any other git failure raises GitError.
        """
        wt = await self.find_worktree(slug)
        target = target_branch or await self.default_branch()
        result = MergeResult(success=False, target_branch=target)

        current = await git.get_current_branch(self.repo_root)
        if current != target:
            await git.run_git(["checkout", target], cwd=self.repo_root)

        if await git.upstream_of(self.repo_root):
            try:
                await git.run_git(["pull", "--no-edit"], cwd=self.repo_root)
            except GitError as e:
                logger.warning("Pull before merge failed, merging local state: %s", e)
                result.warnings.append(f"Could not pull {target}: {e}")

        try:
            await git.run_git(["merge", "--no-edit", wt.branch], cwd=self.repo_root)
        except GitError:
            conflicts = await git.conflicted_files(self.repo_root)
            if conflicts:
                result.conflicts = conflicts
                return result
            raise

        result.success = True
        return result

    async def abort_merge(self) -> None:
        """Abort an in-progress merge. A no-op when no merge is in progress."""
        try:
            await git.run_git(["merge", "--abort"], cwd=self.repo_root)
        except GitError as e:
            message = str(e).lower()
            if "no merge" in message or "merge_head missing" in message:
                return
            raise
