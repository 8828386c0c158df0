"""Cross-task analysis: per-task diffs and files touched by more than one task."""

import asyncio
import logging
from pathlib import Path

from hive.core.tasks import TaskRegistry
from hive.core.worktrees import MAIN_SLUG, WorktreeManager
from hive.db.models import ChangeType, FileChange, FileOverlap, Task, TaskDiffAnalysis, TaskStatus

logger = logging.getLogger(__name__)


def classify_change(full_diff: str, path: str) -> ChangeType:
    """Classify a file by the header of its section in a unified diff."""
    in_section = False
    for line in full_diff.split("\n"):
        if line.startswith("diff --git "):
            in_section = line.endswith(f" b/{path}") or line == f"diff --git a/{path} b/{path}"
            continue
        if not in_section:
            continue
        if line.startswith("new file mode"):
            return ChangeType.ADDED
        if line.startswith("deleted file mode"):
            return ChangeType.DELETED
        if line.startswith(("@@", "--- ", "+++ ")):
            break
    return ChangeType.MODIFIED


def get_overlapping_files(analyses: list[TaskDiffAnalysis]) -> list[FileOverlap]:
    """Files changed by more than one task, sorted by path.

    Purely path based: two tasks touching different lines of a file still overlap.
    """
    file_map: dict[str, list[str]] = {}
    for analysis in analyses:
        for change in analysis.files:
            slugs = file_map.setdefault(change.path, [])
            if analysis.task.slug not in slugs:
                slugs.append(analysis.task.slug)

    return [
        FileOverlap(file=path, tasks=slugs)
        for path, slugs in sorted(file_map.items())
        if len(slugs) > 1
    ]


class CrossTaskAnalyzer:
    def __init__(self, registry: TaskRegistry, worktrees: WorktreeManager):
        self.registry = registry
        self.worktrees = worktrees

    async def analyze_task(self, task: Task, base_branch: str | None = None) -> TaskDiffAnalysis:
        stats, full_diff = await asyncio.gather(
            self.worktrees.get_diff_stats(task.slug, base_branch),
            self.worktrees.get_full_diff(task.slug, base_branch),
        )
        files = [
            FileChange(
                path=f.file,
                type=classify_change(full_diff, f.file),
                additions=f.insertions,
                deletions=f.deletions,
            )
            for f in stats.files
        ]
        return TaskDiffAnalysis(
            task=task,
            files=files,
            total_additions=stats.total_insertions,
            total_deletions=stats.total_deletions,
            full_diff=full_diff,
        )

    async def analyze_all_tasks(
        self,
        tasks: list[Task] | None = None,
        base_branch: str | None = None,
    ) -> tuple[list[TaskDiffAnalysis], list[FileOverlap]]:
        """Analyze tasks concurrently (all active tasks by default) and find overlaps."""
        if tasks is None:
            tasks = self.registry.get_tasks_by_status(TaskStatus.ACTIVE)
        analyses = list(await asyncio.gather(*(self.analyze_task(t, base_branch) for t in tasks)))
        return analyses, get_overlapping_files(analyses)

    def get_file_from_task(self, task: Task, file_path: str) -> str | None:
        try:
            return (Path(task.worktree_path) / file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning('Failed to read "%s" from task worktree %s: %s', file_path, task.slug, e)
            return None

    def get_file_from_main(self, file_path: str) -> str | None:
        try:
            return self.worktrees.read_main_file(file_path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning('Failed to read "%s" from the main working copy: %s', file_path, e)
            return None

    async def get_file_versions(self, file_path: str, tasks: list[Task]) -> dict[str, str]:
        """Contents of file_path on main and in each task, keyed by source. Missing files are omitted."""
        main, *per_task = await asyncio.gather(
            asyncio.to_thread(self.get_file_from_main, file_path),
            *(asyncio.to_thread(self.get_file_from_task, t, file_path) for t in tasks),
        )
        versions: dict[str, str] = {}
        if main is not None:
            versions[MAIN_SLUG] = main
        for task, content in zip(tasks, per_task):
            if content is not None:
                versions[task.slug] = content
        return versions
