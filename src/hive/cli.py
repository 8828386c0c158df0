"""CLI entry point for hive."""

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import click

from hive.config import CONFIG_KEYS, EDITORS, SECRET_KEYS
from hive.core import reconcile as reconcile_mod
from hive.core.errors import AIUnavailableError, DirtyWorktreeError, HiveError
from hive.core.symlinks import format_bytes
from hive.core.workspace import open_config_store, open_workspace
from hive.db.models import TaskStatus
from hive.integrations import ai as ai_mod
from hive.integrations.editor import open_in_editor


def _run(coro):
    """Run a command coroutine, turning hive errors into a message and exit code 1."""
    try:
        return asyncio.run(coro)
    except AIUnavailableError as e:
        click.echo(f"Error: {e}", err=True)
        if e.hint:
            click.echo(f"  {e.hint}", err=True)
        sys.exit(1)
    except HiveError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _echo_warnings(warnings: list[str]) -> None:
    for w in warnings:
        click.echo(f"  Warning: {w}", err=True)


def _echo_review(result: ai_mod.ReviewResult) -> None:
    click.echo(f"Recommendation: {result.recommendation}")
    click.echo(result.summary)
    for c in result.concerns:
        where = f"{c.file}:{c.line}" if c.line else c.file
        click.echo(f"  [{c.severity}] {where} {c.title}")
        click.echo(f"      {c.description}")
        if c.suggestion:
            click.echo(f"      Suggestion: {c.suggestion}")
    for p in result.positives:
        click.echo(f"  + {p}")


async def _echo_resolutions(client: ai_mod.ReviewClient, file_path: str, content: str) -> int:
    """Print a suggested resolution for every conflict block in content."""
    blocks = ai_mod.parse_conflict_markers(content, file_path)
    resolutions = await asyncio.gather(*(ai_mod.resolve_conflict(client, b, content) for b in blocks))
    for block, res in zip(blocks, resolutions):
        click.echo(f"{file_path}:{block.start_line} (confidence {res.confidence}%)")
        click.echo(f"  {res.analysis}")
        click.echo(res.suggested_resolution)
        click.echo(f"  Why: {res.reasoning}")
    return len(blocks)


async def _auto_review(ws, plan) -> None:
    """Review a task before merging; an unavailable reviewer only warns."""
    try:
        client = ai_mod.ReviewClient.from_config(ws.config.ai)
        diff = await ws.worktrees.get_full_diff(plan.task.slug, plan.target_branch)
        _echo_review(await ai_mod.review_task(client, plan.task, diff, plan.diff_stats))
    except AIUnavailableError as e:
        click.echo(f"  Warning: automatic review skipped: {e}", err=True)


async def _suggest_resolutions(ws, conflicts: list[str]) -> None:
    try:
        client = ai_mod.ReviewClient.from_config(ws.config.ai)
        for path in conflicts:
            content = ws.worktrees.read_main_file(path)
            await _echo_resolutions(client, path, content)
    except (AIUnavailableError, OSError, UnicodeDecodeError) as e:
        click.echo(f"  Warning: conflict suggestions skipped: {e}", err=True)


def _time_ago(iso: str) -> str:
    try:
        created = datetime.fromisoformat(iso)
    except ValueError:
        return iso
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    seconds = int((datetime.now(timezone.utc) - created).total_seconds())
    for size, unit in ((86400, "day"), (3600, "hour"), (60, "min")):
        if seconds >= size:
            n = seconds // size
            return f"{n} {unit}{'s' if n != 1 else ''} ago"
    return "just now"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose):
    """hive - run parallel tasks in isolated git worktrees"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.command("new")
@click.argument("description")
@click.option("--base", "base_branch", default=None, help="Branch to start from (default: config defaultBaseBranch)")
def new_task(description, base_branch):
    """Create a task with its own branch and worktree."""

    async def run():
        ws = await open_workspace()
        task, created = await ws.tasks.create_task(description, base_branch)
        click.echo(f"Created task: {task.slug}")
        click.echo(f"  Branch: {task.branch} (from {created.base_branch})")
        click.echo(f"  Worktree: {task.worktree_path}")
        if created.symlinks.created:
            click.echo(
                f"  Saved {format_bytes(created.symlinks.saved_bytes)} via symlinks: "
                f"{', '.join(created.symlinks.created)}"
            )
        _echo_warnings(created.symlinks.warnings)

    _run(run())


@main.command("list")
@click.option("--status", type=click.Choice([s.value for s in TaskStatus]), default=None, help="Filter by status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def list_tasks(status, json_output):
    """List tasks."""

    async def run():
        ws = await open_workspace()
        tasks = ws.registry.get_tasks_by_status(status) if status else ws.registry.get_tasks()

        if json_output:
            click.echo(json.dumps([t.to_dict() for t in tasks], indent=2))
            return

        if not tasks:
            click.echo("No tasks found.")
            return

        icons = {TaskStatus.ACTIVE: "●", TaskStatus.MERGED: "✓", TaskStatus.DROPPED: "✗"}
        for task in tasks:
            click.echo(
                f"  {icons.get(task.status, '?')} {task.slug}: {task.description} "
                f"({task.status.value}, {_time_ago(task.created_at)})"
            )

    _run(run())


@main.command("status")
@click.argument("slug")
def task_status(slug):
    """Show a task and the state of its worktree."""

    async def run():
        ws = await open_workspace()
        task = ws.registry.get_task(slug)
        if task is None:
            click.echo(f"Task not found: {slug}", err=True)
            sys.exit(1)

        click.echo(f"Task: {task.slug}")
        click.echo(f"  Description: {task.description}")
        click.echo(f"  Status: {task.status.value}")
        click.echo(f"  Branch: {task.branch}")
        click.echo(f"  Worktree: {task.worktree_path}")
        click.echo(f"  Created: {task.created_at}")

        if task.status != TaskStatus.ACTIVE:
            return
        wt = await ws.worktrees.get_worktree_status(slug)
        if wt.is_clean:
            click.echo("  Working copy: clean")
        else:
            click.echo(
                f"  Working copy: {wt.modified} modified, {wt.added} added, {wt.deleted} deleted, "
                f"{wt.renamed} renamed, {wt.untracked} untracked, {wt.staged} staged, "
                f"{wt.conflicted} conflicted"
            )
        if wt.ahead or wt.behind:
            click.echo(f"  Upstream: {wt.ahead} ahead, {wt.behind} behind")

    _run(run())


@main.command("open")
@click.argument("slug")
@click.option("--editor", type=click.Choice(EDITORS), default=None, help="Overrides defaultEditor")
def open_task(slug, editor):
    """Open a task's worktree in an editor or a shell."""

    async def run():
        ws = await open_workspace()
        task = ws.registry.get_task(slug)
        if task is None:
            click.echo(f"Task not found: {slug}", err=True)
            sys.exit(1)
        open_in_editor(task.worktree_path, editor or ws.config.default_editor)

    _run(run())


@main.command("diff")
@click.argument("slug")
@click.option("--base", "base_branch", default=None, help="Branch to compare against")
@click.option("--stat", is_flag=True, help="Show per-file statistics only")
def task_diff(slug, base_branch, stat):
    """Show the changes a task branch makes relative to its base."""

    async def run():
        ws = await open_workspace()
        if ws.registry.get_task(slug) is None:
            click.echo(f"Task not found: {slug}", err=True)
            sys.exit(1)

        base = base_branch or ws.config.default_base_branch
        if not stat:
            click.echo(await ws.worktrees.get_full_diff(slug, base), nl=False)
            return

        stats = await ws.worktrees.get_diff_stats(slug, base)
        for f in stats.files:
            click.echo(f"  {f.change_type.value:<9} {f.file} (+{f.insertions} -{f.deletions})")
        click.echo(
            f"{stats.total_files} file(s) changed, "
            f"{stats.total_insertions} insertions(+), {stats.total_deletions} deletions(-)"
        )

    _run(run())


@main.command("merge")
@click.argument("slug")
@click.option("--target", "target_branch", default=None, help="Branch to merge into (default: config defaultBaseBranch)")
@click.option("--no-delete", is_flag=True, help="Keep the worktree after a successful merge")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def merge_task(slug, target_branch, no_delete, yes):
    """Merge a task branch back and clean up its worktree."""

    async def run():
        ws = await open_workspace()
        plan = await ws.merger.prepare(slug, target_branch)
        stats = plan.diff_stats

        click.echo(f"Merge task: {slug}")
        click.echo(f"  {plan.task.description}")
        click.echo(
            f"  {stats.total_files} file(s) changed, "
            f"+{stats.total_insertions} insertions, -{stats.total_deletions} deletions"
        )
        click.echo(f"  Branch: {plan.task.branch} -> {plan.target_branch}")
        if no_delete:
            click.echo("  Worktree will be kept after merge (--no-delete)")
        else:
            click.echo("  Worktree will be removed after a successful merge")

        if ws.config.ai.enabled and ws.config.ai.auto_review:
            await _auto_review(ws, plan)

        if not yes and not click.confirm("Proceed with merge?", default=False):
            click.echo("Merge cancelled.")
            return

        result = await ws.merger.execute(plan, keep_worktree=no_delete)
        if not result.success:
            click.echo("Merge conflicts detected in:", err=True)
            for path in result.conflicts:
                click.echo(f"  - {path}", err=True)
            click.echo("", err=True)
            click.echo("To resolve conflicts:", err=True)
            click.echo("  1. Fix the conflicted files in the main working copy", err=True)
            click.echo("  2. Stage them: git add <file>", err=True)
            click.echo("  3. Complete the merge: git commit", err=True)
            click.echo(f"  4. Run: hive merge {slug} again (or hive abort-merge to give up)", err=True)
            click.echo("The merge is still in progress. The task worktree was not removed.", err=True)
            if ws.config.ai.enabled and ws.config.ai.auto_resolve_conflicts:
                await _suggest_resolutions(ws, result.conflicts)
            sys.exit(1)

        click.echo(f"Merged {plan.task.branch} into {plan.target_branch}")
        _echo_warnings(result.warnings)

    _run(run())


@main.command("abort-merge")
def abort_merge():
    """Abort a merge left in progress in the main working copy."""

    async def run():
        ws = await open_workspace()
        await ws.merger.abort()
        click.echo("Merge aborted (if one was in progress).")

    _run(run())


@main.command("drop")
@click.argument("slug")
@click.option("--force", "-f", is_flag=True, help="Drop even with uncommitted changes, without asking")
@click.option("--keep-record", is_flag=True, help="Keep the task in the registry marked as dropped")
def drop_task(slug, force, keep_record):
    """Remove a task's worktree, branch and record."""

    async def run():
        ws = await open_workspace()
        try:
            result = await ws.tasks.drop_task(slug, force=force, keep_record=keep_record)
        except DirtyWorktreeError as e:
            click.echo(f"Warning: {e}", err=True)
            if not click.confirm(f"Discard {e.changed_files} uncommitted file(s) and drop {slug}?", default=False):
                click.echo("Drop cancelled.")
                return
            result = await ws.tasks.drop_task(slug, force=True, keep_record=keep_record)

        click.echo(f"Dropped task: {slug}")
        if result.worktree_removed:
            click.echo("  Worktree removed")
        if result.branch_deleted:
            click.echo("  Branch deleted")
        _echo_warnings(result.warnings)

    _run(run())


@main.command("clean")
@click.option("--stale", default=None, help="Inactivity threshold such as 7d, 12h or 30m")
@click.option("--orphans", is_flag=True, help="Reconcile worktrees and task records instead")
@click.option("--force", "-f", is_flag=True, help="Do not ask for confirmation")
@click.option("--dry-run", is_flag=True, help="Only report what would be removed")
def clean(stale, orphans, force, dry_run):
    """Remove stale tasks, or reconcile orphaned worktrees and records."""

    async def run():
        ws = await open_workspace()

        if orphans:
            report = await reconcile_mod.scan(ws.registry, ws.worktrees)
            if report.consistent:
                click.echo("Worktrees and task records are consistent.")
                return
            for wt in report.orphan_worktrees:
                click.echo(f"  Orphan worktree: {wt.slug} ({wt.path})")
            for task in report.missing_worktrees:
                click.echo(f"  Task without worktree: {task.slug}")
            if dry_run:
                return
            if not force and not click.confirm("Clean these up?", default=False):
                return
            removed = await reconcile_mod.clean_orphans(ws.worktrees, report)
            dropped = await reconcile_mod.clean_tasks(ws.tasks, [t.slug for t in report.missing_worktrees])
            click.echo(f"Cleaned {len(removed.cleaned) + len(dropped.cleaned)} item(s).")
            for slug, reason in {**removed.failed, **dropped.failed}.items():
                click.echo(f"  Failed {slug}: {reason}", err=True)
            return

        if stale is None and ws.config.auto_clean_stale_days:
            threshold = f"{ws.config.auto_clean_stale_days}d"
        else:
            threshold = stale or "7d"
        stale_tasks = await reconcile_mod.find_stale_tasks(ws.registry, reconcile_mod.parse_stale_duration(threshold))
        if not stale_tasks:
            click.echo(f"No stale tasks found. All tasks have been active within {threshold}.")
            return

        selected = []
        for item in stale_tasks:
            label = f"{item.task.slug} (last activity {_time_ago(item.last_activity.isoformat())})"
            if dry_run:
                click.echo(f"  Would remove: {label}")
            elif force or click.confirm(f"Remove {label}?", default=False):
                selected.append(item.task.slug)
        if dry_run:
            return

        outcome = await reconcile_mod.clean_tasks(ws.tasks, selected)
        click.echo(f"Cleaned {len(outcome.cleaned)} task(s).")
        for slug, reason in outcome.failed.items():
            click.echo(f"  Failed {slug}: {reason}", err=True)

    _run(run())


# ── Analysis Commands ─────────────────────────────────────────────────────────


@main.command("overlaps")
@click.option("--base", "base_branch", default=None, help="Branch to compare against")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def overlaps(base_branch, json_output):
    """Show files changed by more than one active task."""

    async def run():
        ws = await open_workspace()
        analyses, found = await ws.analyzer.analyze_all_tasks(base_branch=base_branch or ws.config.default_base_branch)

        if json_output:
            click.echo(json.dumps({
                "taskAnalyses": [
                    {
                        "slug": a.task.slug,
                        "files": [
                            {"path": f.path, "type": f.type.value, "additions": f.additions, "deletions": f.deletions}
                            for f in a.files
                        ],
                        "totalAdditions": a.total_additions,
                        "totalDeletions": a.total_deletions,
                    }
                    for a in analyses
                ],
                "overlaps": [{"file": o.file, "tasks": o.tasks} for o in found],
            }, indent=2))
            return

        for a in analyses:
            click.echo(f"  {a.task.slug}: {len(a.files)} file(s), +{a.total_additions} -{a.total_deletions}")
        if not found:
            click.echo("No overlapping files.")
            return
        click.echo("Overlapping files:")
        for o in found:
            click.echo(f"  {o.file}: {', '.join(o.tasks)}")

    _run(run())


@main.command("review")
@click.argument("slug")
@click.option("--base", "base_branch", default=None, help="Branch to compare against")
def review(slug, base_branch):
    """Ask the AI reviewer about a task's changes."""

    async def run():
        ws = await open_workspace()
        client = ai_mod.ReviewClient.from_config(ws.config.ai)
        task = ws.registry.get_task(slug)
        if task is None:
            click.echo(f"Task not found: {slug}", err=True)
            sys.exit(1)

        base = base_branch or ws.config.default_base_branch
        stats, diff = await asyncio.gather(
            ws.worktrees.get_diff_stats(slug, base),
            ws.worktrees.get_full_diff(slug, base),
        )
        if not stats.files:
            click.echo("No changes to review.")
            return

        _echo_review(await ai_mod.review_task(client, task, diff, stats))

    _run(run())


@main.command("sync")
@click.option("--base", "base_branch", default=None, help="Branch to compare against")
@click.option("--detailed", is_flag=True, help="Also analyze each overlapping file across its tasks")
def sync(base_branch, detailed):
    """Analyze all active tasks together and suggest a merge order."""

    async def run():
        ws = await open_workspace()
        client = ai_mod.ReviewClient.from_config(ws.config.ai)
        analyses, found = await ws.analyzer.analyze_all_tasks(base_branch=base_branch or ws.config.default_base_branch)
        if not analyses:
            click.echo("No active tasks.")
            return

        report = await ai_mod.analyze_batch(client, analyses, found)
        for s in report.task_summaries:
            click.echo(f"  {s.slug} [{s.impact}]: {s.summary}")
        for c in report.conflicts:
            click.echo(f"  [{c.severity}] {c.file} ({', '.join(c.affected_tasks)}): {c.analysis}")
            click.echo(f"      Resolution: {c.suggested_resolution}")
        strategy = report.merge_strategy
        click.echo(f"Merge order ({strategy.estimated_difficulty}): {' -> '.join(strategy.recommended_order)}")
        click.echo(f"  {strategy.reasoning}")
        click.echo(report.overall_assessment)

        if not detailed:
            return
        by_slug = {a.task.slug: a.task for a in analyses}
        for overlap in found:
            tasks = [by_slug[s] for s in overlap.tasks]
            versions = await ws.analyzer.get_file_versions(overlap.file, tasks)
            c = await ai_mod.analyze_detailed_conflict(client, overlap.file, versions, tasks)
            click.echo(f"  [{c.severity}] {c.file}: {c.analysis}")
            click.echo(f"      Resolution: {c.suggested_resolution}")

    _run(run())


@main.command("resolve")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
def resolve(file):
    """Suggest resolutions for conflict markers in a file."""

    async def run():
        ws = await open_workspace()
        client = ai_mod.ReviewClient.from_config(ws.config.ai)
        content = Path(file).read_text(encoding="utf-8")
        if not await _echo_resolutions(client, file, content):
            click.echo(f"No conflict markers found in {file}.")

    _run(run())


# ── Config Commands ───────────────────────────────────────────────────────────


@main.group("config")
def config_group():
    """Show and change project configuration."""
    pass


def _masked(data: dict) -> dict:
    ai = dict(data.get("ai", {}))
    if ai.get("apiKey"):
        ai["apiKey"] = "********"
    return {**data, "ai": ai}


@config_group.command("show")
def config_show():
    """Print the whole configuration."""

    async def run():
        ws = await open_workspace()
        click.echo(json.dumps(_masked(ws.config.to_document()), indent=2))

    _run(run())


@config_group.command("get")
@click.argument("key", type=click.Choice(list(CONFIG_KEYS)))
def config_get(key):
    """Print one configuration value."""

    async def run():
        store = await open_config_store()
        value = store.get_value(key)
        if key in SECRET_KEYS and value:
            value = "********"
        click.echo(json.dumps(value))

    _run(run())


@config_group.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key, value):
    """Set a configuration value (lists are comma-separated)."""

    async def run():
        store = await open_config_store()
        store.set_value(key, value)
        click.echo(f"Set {key}")

    _run(run())


@config_group.command("reset")
def config_reset():
    """Restore the default configuration."""

    async def run():
        store = await open_config_store()
        store.reset()
        click.echo("Configuration reset to defaults.")

    _run(run())


@config_group.command("path")
def config_path():
    """Print the configuration file path."""

    async def run():
        store = await open_config_store()
        click.echo(str(store.path))

    _run(run())


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from hive.mcp.server import mcp
    from hive.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
