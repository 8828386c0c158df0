"""Tests for git worktree operations."""

import os
import shutil
from pathlib import Path

import pytest

from hive.config import HiveConfig
from hive.core.errors import AlreadyExistsError, NotARepositoryError, NotFoundError, ValidationError
from hive.core.symlinks import create_symlinks, detect_shared_dirs, format_bytes
from hive.core.worktrees import MAIN_SLUG, WorktreeManager

from conftest import commit_file, git


@pytest.fixture
def manager(git_repo):
    return WorktreeManager(git_repo, HiveConfig())


class TestWorktreeLifecycle:
    @pytest.mark.asyncio
    async def test_open_outside_repository(self, tmp_path):
        with pytest.raises(NotARepositoryError):
            await WorktreeManager.open(tmp_path, HiveConfig())

    @pytest.mark.asyncio
    async def test_open_from_linked_worktree_finds_main(self, manager, git_repo):
        created = await manager.create_worktree("feature")
        reopened = await WorktreeManager.open(created.path, HiveConfig())
        assert reopened.repo_root == Path(git_repo)

    @pytest.mark.asyncio
    async def test_default_branch(self, manager):
        assert await manager.default_branch() == "main"

    @pytest.mark.asyncio
    async def test_create_worktree(self, manager, git_repo):
        created = await manager.create_worktree("feature")
        assert created.branch == "hive/feature"
        assert created.base_branch == "main"
        assert Path(created.path) == Path(git_repo) / ".worktrees" / "feature"
        assert (Path(created.path) / "README.md").exists()

        listed = {wt.slug: wt for wt in await manager.list_worktrees()}
        assert set(listed) == {MAIN_SLUG, "feature"}
        assert listed["feature"].branch == "hive/feature"

    @pytest.mark.asyncio
    async def test_create_duplicate(self, manager):
        await manager.create_worktree("feature")
        with pytest.raises(AlreadyExistsError):
            await manager.create_worktree("feature")

    @pytest.mark.asyncio
    async def test_create_when_branch_exists(self, manager, git_repo):
        git(git_repo, "branch", "hive/taken")
        with pytest.raises(AlreadyExistsError):
            await manager.create_worktree("taken")

    @pytest.mark.asyncio
    async def test_create_invalid_slug(self, manager):
        with pytest.raises(ValidationError):
            await manager.create_worktree("../escape")

    @pytest.mark.asyncio
    async def test_fresh_worktree_has_no_diff(self, manager):
        await manager.create_worktree("feature")
        stats = await manager.get_diff_stats("feature", "main")
        assert stats.files == []
        assert stats.total_files == stats.total_insertions == stats.total_deletions == 0
        assert await manager.get_full_diff("feature", "main") == ""

    @pytest.mark.asyncio
    async def test_diff_ignores_commits_on_base(self, manager, git_repo):
        created = await manager.create_worktree("feature")
        commit_file(created.path, "feature.txt", "one\n")
        commit_file(git_repo, "README.md", "# Changed on main\n")

        stats = await manager.get_diff_stats("feature", "main")
        assert [f.file for f in stats.files] == ["feature.txt"]

    @pytest.mark.asyncio
    async def test_status(self, manager):
        created = await manager.create_worktree("feature")
        status = await manager.get_worktree_status("feature")
        assert status.is_clean
        assert not await manager.has_uncommitted_changes("feature")

        (Path(created.path) / "README.md").write_text("edited\n")
        (Path(created.path) / "scratch.txt").write_text("tmp\n")
        status = await manager.get_worktree_status("feature")
        assert not status.is_clean
        assert status.modified == 1
        assert status.untracked == 1
        assert status.changed_files == 2

    @pytest.mark.asyncio
    async def test_remove_worktree(self, manager, git_repo):
        created = await manager.create_worktree("feature")
        (Path(created.path) / "dirty.txt").write_text("uncommitted\n")

        removed = await manager.remove_worktree("feature")
        assert removed.branch_deleted
        assert not Path(created.path).exists()
        assert "hive/feature" not in await manager.list_branches()
        assert [wt.slug for wt in await manager.list_worktrees()] == [MAIN_SLUG]

    @pytest.mark.asyncio
    async def test_remove_worktree_whose_directory_vanished(self, manager):
        created = await manager.create_worktree("feature")
        shutil.rmtree(created.path)

        removed = await manager.remove_worktree("feature")
        assert removed.branch_deleted
        assert [wt.slug for wt in await manager.list_worktrees()] == [MAIN_SLUG]

    @pytest.mark.asyncio
    async def test_remove_unknown(self, manager):
        with pytest.raises(NotFoundError):
            await manager.remove_worktree("nope")

    @pytest.mark.asyncio
    async def test_refuses_to_remove_main(self, manager):
        with pytest.raises(ValidationError):
            await manager.remove_worktree(MAIN_SLUG)

    @pytest.mark.asyncio
    async def test_abort_without_merge_is_noop(self, manager):
        await manager.abort_merge()
        await manager.abort_merge()


class TestSymlinks:
    def test_detect_by_marker(self, tmp_path):
        assert "node_modules" not in detect_shared_dirs(tmp_path)
        (tmp_path / "package.json").write_text("{}")
        dirs = detect_shared_dirs(tmp_path, ["models"])
        assert "node_modules" in dirs
        assert "build" in dirs
        assert dirs[-1] == "models"

    @pytest.mark.asyncio
    async def test_links_existing_dirs_relatively(self, tmp_path):
        repo = tmp_path / "repo"
        worktree = repo / ".worktrees" / "feature"
        (repo / "node_modules" / "left-pad").mkdir(parents=True)
        (repo / "node_modules" / "left-pad" / "index.js").write_text("x" * 100)
        (repo / "package.json").write_text("{}")
        worktree.mkdir(parents=True)

        report = await create_symlinks(repo, worktree)
        assert report.created == ["node_modules"]
        assert report.saved_bytes == 100
        assert "dist" in report.skipped
        link = worktree / "node_modules"
        assert link.is_symlink()
        assert not os.path.isabs(os.readlink(link))
        assert (link / "left-pad" / "index.js").read_text() == "x" * 100

    @pytest.mark.asyncio
    async def test_existing_target_is_skipped(self, tmp_path):
        repo = tmp_path / "repo"
        worktree = tmp_path / "wt"
        (repo / "build").mkdir(parents=True)
        (worktree / "build").mkdir(parents=True)

        report = await create_symlinks(repo, worktree)
        assert report.created == []
        assert "build" in report.skipped
        assert not (worktree / "build").is_symlink()

    @pytest.mark.asyncio
    async def test_create_worktree_links_shared_dirs(self, git_repo):
        (Path(git_repo) / ".cache").mkdir()
        (Path(git_repo) / ".cache" / "blob").write_text("cached")
        manager = WorktreeManager(git_repo, HiveConfig())
        created = await manager.create_worktree("feature")
        assert created.symlinks.created == [".cache"]
        assert (Path(created.path) / ".cache").is_symlink()

    @pytest.mark.asyncio
    async def test_auto_symlink_disabled(self, git_repo):
        (Path(git_repo) / ".cache").mkdir()
        manager = WorktreeManager(git_repo, HiveConfig(auto_symlink=False))
        created = await manager.create_worktree("feature")
        assert created.symlinks.created == []
        assert not (Path(created.path) / ".cache").exists()

    def test_format_bytes(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(2048) == "2.0 KB"
        assert format_bytes(5 * 1024 * 1024) == "5.0 MB"
