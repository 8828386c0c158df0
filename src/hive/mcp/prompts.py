"""MCP prompt templates for common workflows."""

from hive.mcp.server import mcp


@mcp.prompt()
def review_task(slug: str) -> str:
    """Generate a prompt to review the changes made in a task."""
    return (
        f"Please review the work done for task '{slug}'.\n\n"
        f"Use task_status to see the task and its worktree state, and diff_stats to see "
        f"which files changed. Then provide:\n"
        f"1. Summary of changes made\n"
        f"2. Whether the task description appears to be fulfilled\n"
        f"3. Any issues or concerns\n"
        f"4. Whether it is ready to merge"
    )


@mcp.prompt()
def plan_merge(base_branch: str = "main") -> str:
    """Generate a prompt to plan merging all active tasks."""
    return (
        f"Please plan how to merge the active tasks into '{base_branch}'.\n\n"
        f"Use analyze_tasks to get per-task changes and overlapping files, then provide:\n"
        f"1. A short summary of each task\n"
        f"2. Files touched by several tasks and the likely conflicts\n"
        f"3. A recommended merge order with reasoning\n"
        f"4. Tasks that should be rebased or split first\n\n"
        f"Merge in that order with merge_task. If a merge reports conflicts, stop and "
        f"list them; do not call abort_merge unless asked."
    )


@mcp.prompt()
def start_task(goal: str) -> str:
    """Generate a prompt to split a goal into parallel tasks."""
    return (
        f"I need to accomplish the following goal:\n\n"
        f"{goal}\n\n"
        f"Break it into independent pieces of work that can proceed in parallel without "
        f"touching the same files. For each piece, call create_task with a short "
        f"description; each gets its own branch and worktree."
    )
