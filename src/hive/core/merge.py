"""Merge coordination: prechecks, the merge attempt, and post-merge state updates."""

import logging
from dataclasses import dataclass

from hive.core.errors import DirtyWorktreeError, HiveError, InvalidStateError, NotFoundError
from hive.core.tasks import TaskRegistry
from hive.core.worktrees import WorktreeManager
from hive.db.models import DiffStats, MergeResult, Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class MergePlan:
    """A task that passed the prechecks, with the diff it would bring in."""

    task: Task
    target_branch: str
    diff_stats: DiffStats


class MergeCoordinator:
    """Drives a task branch into its target branch.

    ``prepare`` runs every check that does not touch the repository, so the
    caller can show the diff and ask for confirmation before ``execute``.
    """

    def __init__(self, registry: TaskRegistry, worktrees: WorktreeManager):
        self.registry = registry
        self.worktrees = worktrees

    async def prepare(self, slug: str, target_branch: str | None = None) -> MergePlan:
        task = self.registry.get_task(slug)
        if task is None:
            raise NotFoundError(f'Task "{slug}" not found')
        if task.status != TaskStatus.ACTIVE:
            raise InvalidStateError(
                f'Task "{slug}" is {task.status.value}. Only active tasks can be merged.'
            )

        status = await self.worktrees.get_worktree_status(slug)
        if not status.is_clean:
            raise DirtyWorktreeError(
                slug,
                status.changed_files,
                f'Task "{slug}" has uncommitted changes. '
                "Please commit or discard your changes before merging.",
            )

        target = target_branch or self.worktrees.config.default_base_branch
        stats = await self.worktrees.get_diff_stats(slug, target)
        return MergePlan(task=task, target_branch=target, diff_stats=stats)

    async def execute(self, plan: MergePlan, keep_worktree: bool = False) -> MergeResult:
        """Merge a prepared task.

        On conflict the merge is left in progress and the task stays active.
        On any other failure the partial merge is aborted before re-raising.
        """
        slug = plan.task.slug
        try:
            result = await self.worktrees.merge_branch(slug, plan.target_branch)
        except HiveError:
            try:
                await self.worktrees.abort_merge()
            except HiveError as abort_error:
                logger.warning("Could not abort merge of %s: %s", slug, abort_error)
            raise

        if not result.success:
            logger.info("Merge of %s into %s stopped on %d conflict(s)", slug, plan.target_branch, len(result.conflicts))
            return result

        self.registry.update_task(slug, status=TaskStatus.MERGED)
        logger.info("Merged %s into %s", slug, plan.target_branch)

        if not keep_worktree:
            try:
                removed = await self.worktrees.remove_worktree(slug)
                result.warnings.extend(removed.warnings)
            except HiveError as e:
                logger.warning("Merged %s but could not remove its worktree: %s", slug, e)
                result.warnings.append(f"Could not remove worktree: {e}")
        return result

    async def merge_task(
        self,
        slug: str,
        target_branch: str | None = None,
        keep_worktree: bool = False,
    ) -> MergeResult:
        plan = await self.prepare(slug, target_branch)
        return await self.execute(plan, keep_worktree=keep_worktree)

    async def abort(self) -> None:
        await self.worktrees.abort_merge()
