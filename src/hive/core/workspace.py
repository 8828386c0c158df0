"""Per-invocation wiring of the config, registry and worktree components."""

from dataclasses import dataclass
from pathlib import Path

from hive.config import (
    CONFIG_FILE_NAME,
    TASKS_FILE_NAME,
    ConfigStore,
    HiveConfig,
    Settings,
    get_settings,
)
from hive.core.analysis import CrossTaskAnalyzer
from hive.core.lifecycle import TaskService
from hive.core.merge import MergeCoordinator
from hive.core.tasks import TaskRegistry
from hive.core.worktrees import WorktreeManager


@dataclass
class Workspace:
    repo_root: Path
    state_dir: Path
    config_store: ConfigStore
    config: HiveConfig
    registry: TaskRegistry
    worktrees: WorktreeManager
    tasks: TaskService
    merger: MergeCoordinator
    analyzer: CrossTaskAnalyzer


async def _resolve_paths(path: str | Path | None, settings: Settings) -> tuple[Path, Path]:
    start = Path(path) if path is not None else settings.repo_path
    # Config lives under the repo root, which needs the manager to resolve it.
    repo = await WorktreeManager.open(start, HiveConfig())
    return repo.repo_root, repo.repo_root / settings.state_dir


async def open_config_store(path: str | Path | None = None, settings: Settings | None = None) -> ConfigStore:
    """The config store of the repository around path, not yet loaded.

    Lets a broken config document be reset or overwritten.
    """
    _, state_dir = await _resolve_paths(path, settings or get_settings())
    return ConfigStore(state_dir / CONFIG_FILE_NAME)


async def open_workspace(path: str | Path | None = None, settings: Settings | None = None) -> Workspace:
    """Resolve the repository around path and build the component graph.

    Raises NotARepositoryError when path is not inside a git repository.
    """
    repo_root, state_dir = await _resolve_paths(path, settings or get_settings())

    config_store = ConfigStore(state_dir / CONFIG_FILE_NAME)
    config = config_store.load()

    registry = TaskRegistry(state_dir / TASKS_FILE_NAME)
    worktrees = WorktreeManager(repo_root, config)
    return Workspace(
        repo_root=repo_root,
        state_dir=state_dir,
        config_store=config_store,
        config=config,
        registry=registry,
        worktrees=worktrees,
        tasks=TaskService(registry, worktrees),
        merger=MergeCoordinator(registry, worktrees),
        analyzer=CrossTaskAnalyzer(registry, worktrees),
    )
