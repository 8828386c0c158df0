"""Tests for the MCP tools, called directly with a stand-in request context."""

from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio

from hive.config import Settings
from hive.core.workspace import open_workspace
from hive.mcp import prompts
from hive.mcp import server

from conftest import commit_file


@pytest_asyncio.fixture
async def ctx(git_repo):
    ws = await open_workspace(settings=Settings(repo_path=git_repo))
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context=server.AppContext(workspace=ws)))


class TestTaskTools:
    @pytest.mark.asyncio
    async def test_create_and_list(self, ctx):
        created = await server.create_task(ctx, "Add search")
        assert created["slug"] == "add-search"
        assert created["branch"] == "hive/add-search"
        assert created["base_branch"] == "main"

        tasks = await server.list_tasks(ctx)
        assert [t["slug"] for t in tasks] == ["add-search"]
        assert await server.list_tasks(ctx, status="merged") == []

    @pytest.mark.asyncio
    async def test_list_unknown_status_returns_error(self, ctx):
        result = await server.list_tasks(ctx, status="archived")
        assert "archived" in result["error"]

    @pytest.mark.asyncio
    async def test_create_duplicate_returns_error(self, ctx):
        await server.create_task(ctx, "Add search")
        result = await server.create_task(ctx, "Add search")
        assert "error" in result

    @pytest.mark.asyncio
    async def test_status_and_diff(self, ctx):
        await server.create_task(ctx, "Add search")
        ws = ctx.request_context.lifespan_context.workspace
        worktree = Path(ws.registry.get_task("add-search").worktree_path)
        commit_file(worktree, "search.py", "def search():\n    pass\n")
        (worktree / "scratch.txt").write_text("x\n")

        status = await server.task_status(ctx, "add-search")
        assert status["worktree"]["clean"] is False
        assert status["worktree"]["untracked"] == 1

        stats = await server.diff_stats(ctx, "add-search")
        assert stats["total_files"] == 1
        assert stats["files"][0] == {
            "file": "search.py",
            "insertions": 2,
            "deletions": 0,
            "change_type": "added",
            "binary": False,
        }

        assert await server.task_status(ctx, "nope") == {"error": "Task not found: nope"}
        assert "error" in await server.diff_stats(ctx, "nope")

    @pytest.mark.asyncio
    async def test_merge(self, ctx, git_repo):
        await server.create_task(ctx, "Add search")
        ws = ctx.request_context.lifespan_context.workspace
        commit_file(ws.registry.get_task("add-search").worktree_path, "search.py", "x = 1\n")

        result = await server.merge_task(ctx, "add-search")
        assert result["success"] is True
        assert result["diff_stats"]["total_files"] == 1
        assert (Path(git_repo) / "search.py").exists()
        assert (await server.list_tasks(ctx, status="merged"))[0]["slug"] == "add-search"

    @pytest.mark.asyncio
    async def test_merge_conflict_and_abort(self, ctx, git_repo):
        await server.create_task(ctx, "Edit readme")
        ws = ctx.request_context.lifespan_context.workspace
        commit_file(ws.registry.get_task("edit-readme").worktree_path, "README.md", "# task\n")
        commit_file(git_repo, "README.md", "# main\n")

        result = await server.merge_task(ctx, "edit-readme")
        assert result["success"] is False
        assert result["conflicts"] == ["README.md"]
        assert await server.abort_merge(ctx) == {"aborted": True}

    @pytest.mark.asyncio
    async def test_drop(self, ctx):
        await server.create_task(ctx, "Throw away")
        ws = ctx.request_context.lifespan_context.workspace
        (Path(ws.registry.get_task("throw-away").worktree_path) / "wip.txt").write_text("x\n")

        refused = await server.drop_task(ctx, "throw-away")
        assert refused["changed_files"] == 1
        assert "error" in refused

        dropped = await server.drop_task(ctx, "throw-away", force=True)
        assert dropped["dropped"] == "throw-away"
        assert dropped["worktree_removed"] is True
        assert await server.list_tasks(ctx) == []


class TestAnalysisTools:
    @pytest.mark.asyncio
    async def test_analyze_tasks(self, ctx):
        await server.create_task(ctx, "First")
        await server.create_task(ctx, "Second")
        ws = ctx.request_context.lifespan_context.workspace
        for slug in ("first", "second"):
            commit_file(ws.registry.get_task(slug).worktree_path, "shared.txt", f"{slug}\n")

        result = await server.analyze_tasks(ctx)
        assert [t["slug"] for t in result["tasks"]] == ["first", "second"]
        assert result["overlaps"] == [{"file": "shared.txt", "tasks": ["first", "second"]}]

    @pytest.mark.asyncio
    async def test_reconcile(self, ctx):
        ws = ctx.request_context.lifespan_context.workspace
        await ws.worktrees.create_worktree("stray")

        report = await server.reconcile(ctx)
        assert report["consistent"] is False
        assert [w["slug"] for w in report["orphan_worktrees"]] == ["stray"]
        assert "cleaned" not in report

        cleaned = await server.reconcile(ctx, clean=True)
        assert cleaned["cleaned"] == ["stray"]
        assert (await server.reconcile(ctx))["consistent"] is True


class TestPrompts:
    def test_prompts_mention_tools(self):
        assert "diff_stats" in prompts.review_task("add-search")
        assert "analyze_tasks" in prompts.plan_merge()
        assert "create_task" in prompts.start_task("Build a search page")
