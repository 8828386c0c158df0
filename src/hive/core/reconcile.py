"""Reconciliation between the task registry and the worktrees on disk, and stale-task cleanup."""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from hive.core.errors import HiveError, ValidationError
from hive.core.lifecycle import TaskService
from hive.core.tasks import TaskRegistry
from hive.core.worktrees import MAIN_SLUG, WorktreeManager
from hive.db.models import Task, TaskStatus, WorktreeInfo
from hive.integrations import git

logger = logging.getLogger(__name__)

DEFAULT_STALE = timedelta(days=7)
_DURATION_RE = re.compile(r"^\s*(\d+)\s*([dhm])\s*$", re.IGNORECASE)
_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


@dataclass
class ReconcileReport:
    orphan_worktrees: list[WorktreeInfo] = field(default_factory=list)
    missing_worktrees: list[Task] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.orphan_worktrees and not self.missing_worktrees


@dataclass
class StaleTask:
    task: Task
    last_activity: datetime


@dataclass
class CleanOutcome:
    cleaned: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def parse_stale_duration(value: str | None) -> timedelta:
    """Parse durations like '7d', '12h' or '30m'."""
    if not value:
        return DEFAULT_STALE
    match = _DURATION_RE.match(value)
    if not match:
        raise ValidationError(f"Invalid duration {value!r}. Use a number followed by d, h or m (e.g. 7d).")
    amount, unit = int(match.group(1)), match.group(2).lower()
    return timedelta(**{_UNITS[unit]: amount})


async def last_activity(worktree_path: str | Path) -> datetime:
    """Time of the last commit in a worktree, else its mtime, else the epoch."""
    path = Path(worktree_path)
    if path.is_dir():
        ts = await git.last_commit_time(path)
        if ts is not None:
            return datetime.fromtimestamp(ts, tz=timezone.utc)
        try:
            return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except OSError:
            pass
    return datetime.fromtimestamp(0, tz=timezone.utc)


async def find_stale_tasks(registry: TaskRegistry, older_than: timedelta, now: float | None = None) -> list[StaleTask]:
    """Active tasks whose worktree saw no activity within older_than."""
    cutoff = datetime.fromtimestamp(now if now is not None else time.time(), tz=timezone.utc) - older_than
    stale = []
    for task in registry.get_tasks_by_status(TaskStatus.ACTIVE):
        activity = await last_activity(task.worktree_path)
        if activity < cutoff:
            stale.append(StaleTask(task=task, last_activity=activity))
    return stale


async def scan(registry: TaskRegistry, worktrees: WorktreeManager) -> ReconcileReport:
    """Report worktrees without a task record and active tasks without a worktree."""
    report = ReconcileReport()
    tasks = {t.slug: t for t in registry.get_tasks()}
    listed = await worktrees.list_worktrees()
    root = worktrees.worktrees_root.resolve()

    for wt in listed:
        if wt.slug == MAIN_SLUG or wt.is_bare:
            continue
        managed = Path(wt.path).resolve().parent == root or wt.branch.startswith("hive/")
        if managed and wt.slug not in tasks:
            report.orphan_worktrees.append(wt)

    present = {wt.slug for wt in listed if Path(wt.path).exists()}
    for task in tasks.values():
        if task.status == TaskStatus.ACTIVE and task.slug not in present:
            report.missing_worktrees.append(task)
    return report


async def clean_tasks(service: TaskService, slugs: list[str]) -> CleanOutcome:
    """Force-drop each task, continuing past individual failures."""
    outcome = CleanOutcome()
    for slug in slugs:
        try:
            await service.drop_task(slug, force=True)
        except HiveError as e:
            logger.warning("Could not clean %s: %s", slug, e)
            outcome.failed[slug] = str(e)
        else:
            outcome.cleaned.append(slug)
    return outcome


async def clean_orphans(worktrees: WorktreeManager, report: ReconcileReport) -> CleanOutcome:
    """Remove orphaned worktrees and prune records of worktrees gone from disk."""
    outcome = CleanOutcome()
    for wt in report.orphan_worktrees:
        try:
            await worktrees.remove_worktree(wt.slug)
        except HiveError as e:
            logger.warning("Could not remove orphan worktree %s: %s", wt.path, e)
            outcome.failed[wt.slug] = str(e)
        else:
            outcome.cleaned.append(wt.slug)
    await worktrees.prune()
    return outcome
