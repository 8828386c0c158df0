"""MCP server exposing hive task tools."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from hive.core import reconcile as reconcile_mod
from hive.core.errors import DirtyWorktreeError, HiveError
from hive.core.workspace import Workspace, open_workspace
from hive.db.models import DiffStats, Task, TaskStatus


@dataclass
class AppContext:
    workspace: Workspace


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Resolve the repository and build the workspace on startup."""
    workspace = await open_workspace()
    yield AppContext(workspace=workspace)


mcp = FastMCP("hive", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _ws(ctx: Context) -> Workspace:
    return _ctx(ctx).workspace


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
async def list_tasks(ctx: Context, status: str | None = None) -> list[dict] | dict:
    """List tasks. Optionally filter by status: active, merged, dropped."""
    ws = _ws(ctx)
    try:
        tasks = ws.registry.get_tasks_by_status(status) if status else ws.registry.get_tasks()
    except HiveError as e:
        return {"error": str(e)}
    return [_task_to_dict(t) for t in tasks]


@mcp.tool()
async def create_task(ctx: Context, description: str, base_branch: str | None = None) -> dict:
    """Create a task: a slug from the description, a hive/<slug> branch and its own worktree."""
    ws = _ws(ctx)
    try:
        task, created = await ws.tasks.create_task(description, base_branch)
    except HiveError as e:
        return {"error": str(e)}
    result = _task_to_dict(task)
    result["base_branch"] = created.base_branch
    if created.symlinks.created:
        result["symlinked"] = created.symlinks.created
        result["saved_bytes"] = created.symlinks.saved_bytes
    if created.symlinks.warnings:
        result["warnings"] = created.symlinks.warnings
    return result


@mcp.tool()
async def task_status(ctx: Context, slug: str) -> dict:
    """Get a task and the git status of its worktree."""
    ws = _ws(ctx)
    task = ws.registry.get_task(slug)
    if not task:
        return {"error": f"Task not found: {slug}"}
    result = _task_to_dict(task)
    if task.status != TaskStatus.ACTIVE:
        return result
    try:
        status = await ws.worktrees.get_worktree_status(slug)
    except HiveError as e:
        result["worktree_error"] = str(e)
        return result
    result["worktree"] = {
        "clean": status.is_clean,
        "modified": status.modified,
        "added": status.added,
        "deleted": status.deleted,
        "renamed": status.renamed,
        "staged": status.staged,
        "conflicted": status.conflicted,
        "untracked": status.untracked,
        "ahead": status.ahead,
        "behind": status.behind,
    }
    return result


@mcp.tool()
async def diff_stats(ctx: Context, slug: str, base_branch: str | None = None) -> dict:
    """Per-file insertions and deletions of a task branch relative to its base."""
    ws = _ws(ctx)
    if not ws.registry.task_exists(slug):
        return {"error": f"Task not found: {slug}"}
    try:
        stats = await ws.worktrees.get_diff_stats(slug, base_branch or ws.config.default_base_branch)
    except HiveError as e:
        return {"error": str(e)}
    return _stats_to_dict(stats)


@mcp.tool()
async def merge_task(
    ctx: Context,
    slug: str,
    target_branch: str | None = None,
    keep_worktree: bool = False,
) -> dict:
    """Merge a task branch into the target branch and remove its worktree.

    On conflicts the merge is left in progress in the main working copy and
    the conflicted files are returned; resolve them or call abort_merge.
    """
    ws = _ws(ctx)
    try:
        plan = await ws.merger.prepare(slug, target_branch)
        result = await ws.merger.execute(plan, keep_worktree=keep_worktree)
    except HiveError as e:
        return {"error": str(e)}
    return {
        "success": result.success,
        "slug": slug,
        "target_branch": result.target_branch,
        "conflicts": result.conflicts,
        "warnings": result.warnings,
        "diff_stats": _stats_to_dict(plan.diff_stats),
    }


@mcp.tool()
async def abort_merge(ctx: Context) -> dict:
    """Abort a merge left in progress in the main working copy."""
    ws = _ws(ctx)
    try:
        await ws.merger.abort()
    except HiveError as e:
        return {"error": str(e)}
    return {"aborted": True}


@mcp.tool()
async def drop_task(ctx: Context, slug: str, force: bool = False, keep_record: bool = False) -> dict:
    """Drop a task: remove its worktree and branch. Refuses uncommitted changes unless force is set."""
    ws = _ws(ctx)
    try:
        result = await ws.tasks.drop_task(slug, force=force, keep_record=keep_record)
    except DirtyWorktreeError as e:
        return {"error": str(e), "changed_files": e.changed_files}
    except HiveError as e:
        return {"error": str(e)}
    return {
        "dropped": slug,
        "worktree_removed": result.worktree_removed,
        "branch_deleted": result.branch_deleted,
        "record_removed": result.record_removed,
        "warnings": result.warnings,
    }


# ── Analysis Tools ────────────────────────────────────────────────────────────


@mcp.tool()
async def analyze_tasks(ctx: Context, base_branch: str | None = None) -> dict:
    """Diff every active task against the base branch and list files changed by more than one task."""
    ws = _ws(ctx)
    try:
        analyses, overlaps = await ws.analyzer.analyze_all_tasks(
            base_branch=base_branch or ws.config.default_base_branch
        )
    except HiveError as e:
        return {"error": str(e)}
    return {
        "tasks": [
            {
                "slug": a.task.slug,
                "files": [
                    {"path": f.path, "type": f.type.value, "additions": f.additions, "deletions": f.deletions}
                    for f in a.files
                ],
                "total_additions": a.total_additions,
                "total_deletions": a.total_deletions,
            }
            for a in analyses
        ],
        "overlaps": [{"file": o.file, "tasks": o.tasks} for o in overlaps],
    }


@mcp.tool()
async def reconcile(ctx: Context, clean: bool = False) -> dict:
    """Find worktrees without a task record and active tasks whose worktree is gone.

    With clean=True the orphaned worktrees are removed and the dangling tasks dropped.
    """
    ws = _ws(ctx)
    report = await reconcile_mod.scan(ws.registry, ws.worktrees)
    result = {
        "consistent": report.consistent,
        "orphan_worktrees": [{"slug": w.slug, "path": w.path, "branch": w.branch} for w in report.orphan_worktrees],
        "missing_worktrees": [t.slug for t in report.missing_worktrees],
    }
    if clean and not report.consistent:
        removed = await reconcile_mod.clean_orphans(ws.worktrees, report)
        dropped = await reconcile_mod.clean_tasks(ws.tasks, [t.slug for t in report.missing_worktrees])
        result["cleaned"] = removed.cleaned + dropped.cleaned
        result["failed"] = {**removed.failed, **dropped.failed}
    return result


# ── Helpers ───────────────────────────────────────────────────────────────────


def _task_to_dict(task: Task) -> dict:
    return {
        "slug": task.slug,
        "description": task.description,
        "status": task.status.value if isinstance(task.status, TaskStatus) else task.status,
        "branch": task.branch,
        "worktree_path": task.worktree_path,
        "created_at": task.created_at,
    }


def _stats_to_dict(stats: DiffStats) -> dict:
    return {
        "files": [
            {
                "file": f.file,
                "insertions": f.insertions,
                "deletions": f.deletions,
                "change_type": f.change_type.value,
                "binary": f.binary,
            }
            for f in stats.files
        ],
        "total_files": stats.total_files,
        "total_insertions": stats.total_insertions,
        "total_deletions": stats.total_deletions,
    }
