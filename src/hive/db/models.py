"""Data models for hive tasks, worktrees and diffs."""

from dataclasses import dataclass, field
from enum import Enum


class TaskStatus(str, Enum):
    ACTIVE = "active"
    MERGED = "merged"
    DROPPED = "dropped"


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


@dataclass
class Task:
    slug: str
    description: str
    branch: str
    worktree_path: str
    created_at: str
    status: TaskStatus = TaskStatus.ACTIVE

    def to_dict(self) -> dict:
        """Serialize using the keys of the persisted tasks document."""
        return {
            "slug": self.slug,
            "description": self.description,
            "branch": self.branch,
            "worktreePath": self.worktree_path,
            "createdAt": self.created_at,
            "status": self.status.value if isinstance(self.status, TaskStatus) else self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        status = data.get("status")
        try:
            status = TaskStatus(status)
        except ValueError:
            pass  # left raw so validation can name the bad value
        return cls(
            slug=data.get("slug"),
            description=data.get("description"),
            branch=data.get("branch"),
            worktree_path=data.get("worktreePath"),
            created_at=data.get("createdAt"),
            status=status,
        )


@dataclass
class WorktreeInfo:
    slug: str
    path: str
    branch: str
    head: str
    detached: bool = False
    is_bare: bool = False


@dataclass
class WorktreeStatus:
    slug: str
    path: str
    branch: str
    modified: int = 0
    added: int = 0
    deleted: int = 0
    renamed: int = 0
    staged: int = 0
    conflicted: int = 0
    untracked: int = 0
    ahead: int = 0
    behind: int = 0
    is_clean: bool = True
    entries: int = 0

    @property
    def changed_files(self) -> int:
        return self.entries


@dataclass
class FileDiffStat:
    file: str
    insertions: int = 0
    deletions: int = 0
    change_type: ChangeType = ChangeType.MODIFIED
    binary: bool = False


@dataclass
class DiffStats:
    files: list[FileDiffStat] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def total_insertions(self) -> int:
        return sum(f.insertions for f in self.files)

    @property
    def total_deletions(self) -> int:
        return sum(f.deletions for f in self.files)


@dataclass
class SymlinkReport:
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    saved_bytes: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass
class CreatedWorktree:
    slug: str
    path: str
    branch: str
    base_branch: str
    symlinks: SymlinkReport = field(default_factory=SymlinkReport)


@dataclass
class RemovedWorktree:
    slug: str
    path: str
    branch: str
    branch_deleted: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class MergeResult:
    success: bool
    conflicts: list[str] = field(default_factory=list)
    target_branch: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class FileChange:
    path: str
    type: ChangeType
    additions: int = 0
    deletions: int = 0


@dataclass
class TaskDiffAnalysis:
    task: Task
    files: list[FileChange] = field(default_factory=list)
    total_additions: int = 0
    total_deletions: int = 0
    full_diff: str = ""


@dataclass
class FileOverlap:
    file: str
    tasks: list[str] = field(default_factory=list)
