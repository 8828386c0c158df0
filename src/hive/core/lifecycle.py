"""Task lifecycle: creating and dropping tasks together with their worktrees."""

import logging
from dataclasses import dataclass, field

from hive.core.errors import DirtyWorktreeError, DuplicateSlugError, HiveError, NotFoundError
from hive.core.tasks import TaskRegistry, generate_slug, new_task
from hive.core.worktrees import WorktreeManager
from hive.db.models import CreatedWorktree, Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class DropResult:
    slug: str
    worktree_removed: bool = False
    branch_deleted: bool = False
    record_removed: bool = False
    status: TaskStatus | None = None
    warnings: list[str] = field(default_factory=list)


class TaskService:
    """Keeps the registry and the worktrees in step by convention.

    Create makes the worktree first and then the record; drop removes the
    worktree first and then the record. There is no transaction spanning the
    two, so a crash in between leaves an orphan for reconcile.scan to report.
    """

    def __init__(self, registry: TaskRegistry, worktrees: WorktreeManager):
        self.registry = registry
        self.worktrees = worktrees

    async def create_task(self, description: str, base_branch: str | None = None) -> tuple[Task, CreatedWorktree]:
        """Create a worktree for a new task and record it as active."""
        slug = generate_slug(description)
        if self.registry.task_exists(slug):
            raise DuplicateSlugError(f'Task with slug "{slug}" already exists')

        base = base_branch or self.worktrees.config.default_base_branch
        created = await self.worktrees.create_worktree(slug, base)

        task = new_task(slug, description, self.worktrees.repo_root, self.worktrees.config.worktree_dir)
        try:
            self.registry.add_task(task)
        except HiveError:
            logger.warning("Worktree %s created but task record was not saved; it is now orphaned", created.path)
            raise
        return task, created

    async def drop_task(self, slug: str, force: bool = False, keep_record: bool = False) -> DropResult:
        """Remove a task's worktree and branch, then its record.

        Without force, uncommitted changes raise DirtyWorktreeError so the
        caller can confirm and retry with force=True. With keep_record the
        record stays in the registry marked as dropped.
        """
        task = self.registry.get_task(slug)
        if task is None:
            raise NotFoundError(f'Task "{slug}" not found')

        result = DropResult(slug=slug)

        if not force:
            try:
                status = await self.worktrees.get_worktree_status(slug)
            except HiveError as e:
                logger.warning("Could not check worktree status for %s: %s", slug, e)
                result.warnings.append(f"Could not check worktree status: {e}")
            else:
                if not status.is_clean:
                    raise DirtyWorktreeError(
                        slug,
                        status.changed_files,
                        f'Task "{slug}" has {status.changed_files} uncommitted file(s). '
                        "Use --force to drop anyway.",
                    )

        try:
            removed = await self.worktrees.remove_worktree(slug)
        except NotFoundError:
            logger.warning("No worktree found for %s, dropping the record only", slug)
            result.warnings.append(f"No worktree found for {slug}")
        else:
            result.worktree_removed = True
            result.branch_deleted = removed.branch_deleted
            result.warnings.extend(removed.warnings)

        if keep_record:
            updated = self.registry.update_task(slug, status=TaskStatus.DROPPED)
            result.status = updated.status
        else:
            result.record_removed = self.registry.remove_task(slug)
            result.status = TaskStatus.DROPPED
        return result
