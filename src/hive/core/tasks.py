"""Task registry: slug derivation, validation and the persisted task list."""

import re
import unicodedata
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from hive.core.errors import (
    DuplicateSlugError,
    ImmutableFieldError,
    NotFoundError,
    ValidationError,
)
from hive.db.models import Task, TaskStatus
from hive.db.store import DocumentError, read_document, write_document

MAX_SLUG_LENGTH = 50
BRANCH_PREFIX = "hive/"
SLUG_RE = re.compile(r"^[a-z0-9-]+$")

# Fields derived from the slug; an update may never change them.
IMMUTABLE_FIELDS = ("slug", "branch", "worktree_path")
UPDATABLE_FIELDS = ("description", "created_at", "status")


def generate_slug(description: str) -> str:
    """Convert a description to a lowercase, hyphenated slug of at most 50 chars.

    Long slugs are cut back to the last hyphen so no word is truncated.
    """
    text = unicodedata.normalize("NFKD", description).encode("ascii", "ignore").decode("ascii")
    slug = text.lower()
    slug = re.sub(r"['\"]", "", slug)
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = slug.strip("-")

    if len(slug) > MAX_SLUG_LENGTH:
        truncated = slug[:MAX_SLUG_LENGTH]
        if slug[MAX_SLUG_LENGTH] == "-":
            slug = truncated
        else:
            last_hyphen = truncated.rfind("-")
            slug = truncated[:last_hyphen] if last_hyphen > 0 else truncated

    if not slug:
        raise ValidationError(f"Cannot derive a task slug from {description!r}")
    return slug


def branch_for(slug: str) -> str:
    return f"{BRANCH_PREFIX}{slug}"


def worktree_path_for(repo_root: str | Path, worktree_dir: str, slug: str) -> Path:
    return Path(repo_root) / worktree_dir / slug


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_task(slug: str, description: str, repo_root: str | Path, worktree_dir: str) -> Task:
    """Build an active task record whose branch and path derive from the slug."""
    return Task(
        slug=slug,
        description=description,
        branch=branch_for(slug),
        worktree_path=str(worktree_path_for(repo_root, worktree_dir, slug)),
        created_at=now_iso(),
        status=TaskStatus.ACTIVE,
    )


def validate_task(task: Task) -> None:
    """Raise ValidationError if any field of the record is malformed."""
    if not isinstance(task.slug, str) or not task.slug:
        raise ValidationError("Task must have a valid slug")
    if not SLUG_RE.match(task.slug):
        raise ValidationError("Task slug must contain only lowercase letters, numbers, and hyphens")
    for attr, label in (
        ("description", "description"),
        ("branch", "branch name"),
        ("worktree_path", "worktree path"),
        ("created_at", "createdAt timestamp"),
    ):
        value = getattr(task, attr)
        if not isinstance(value, str) or not value:
            raise ValidationError(f"Task must have a valid {label}")
    if not isinstance(task.status, TaskStatus):
        valid = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(f"Task status must be one of: {valid}")


class TaskRegistry:
    """The persisted list of tasks, stored as one JSON document.

    Every mutation reads the whole document, changes it in memory and writes
    it back with an atomic replace. Two processes racing a mutation can lose
    an update; a crash mid-write cannot corrupt the document.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> list[Task]:
        try:
            data = read_document(self.path)
        except DocumentError as e:
            raise ValidationError(f"Invalid tasks file: {e}") from e
        if data is None:
            return []
        raw_tasks = data.get("tasks")
        if not isinstance(raw_tasks, list):
            raise ValidationError("Invalid tasks file format: tasks must be an array")
        tasks = []
        for raw in raw_tasks:
            if not isinstance(raw, dict):
                raise ValidationError("Invalid tasks file: every task must be an object")
            task = Task.from_dict(raw)
            try:
                validate_task(task)
            except ValidationError as e:
                raise ValidationError(f"Invalid tasks file: {e}") from e
            tasks.append(task)
        return tasks

    def _write(self, tasks: list[Task]) -> None:
        write_document(self.path, {"tasks": [t.to_dict() for t in tasks]})

    def get_tasks(self) -> list[Task]:
        return self._read()

    def get_task(self, slug: str) -> Task | None:
        for task in self._read():
            if task.slug == slug:
                return task
        return None

    def task_exists(self, slug: str) -> bool:
        return self.get_task(slug) is not None

    def get_tasks_by_status(self, status: TaskStatus | str) -> list[Task]:
        try:
            status = TaskStatus(status)
        except ValueError:
            valid = ", ".join(s.value for s in TaskStatus)
            raise ValidationError(f"Unknown task status {status!r}. Must be one of: {valid}") from None
        return [t for t in self._read() if t.status == status]

    def add_task(self, task: Task) -> Task:
        """Validate and append a task. Raises DuplicateSlugError on a slug clash."""
        validate_task(task)
        tasks = self._read()
        if any(t.slug == task.slug for t in tasks):
            raise DuplicateSlugError(f'Task with slug "{task.slug}" already exists')
        tasks.append(task)
        self._write(tasks)
        return task

    def update_task(self, slug: str, **changes) -> Task:
        """Apply a partial update to a task and return the new record."""
        tasks = self._read()
        index = next((i for i, t in enumerate(tasks) if t.slug == slug), None)
        if index is None:
            raise NotFoundError(f'Task with slug "{slug}" not found')

        current = tasks[index]
        for key, value in changes.items():
            if key in IMMUTABLE_FIELDS:
                if value != getattr(current, key):
                    raise ImmutableFieldError(f"Cannot change task {key}")
            elif key not in UPDATABLE_FIELDS:
                raise ValidationError(f"Unknown task field: {key}")

        if "status" in changes:
            try:
                changes["status"] = TaskStatus(changes["status"])
            except ValueError:
                valid = ", ".join(s.value for s in TaskStatus)
                raise ValidationError(f"Task status must be one of: {valid}") from None

        updated = replace(current, **changes)
        validate_task(updated)
        tasks[index] = updated
        self._write(tasks)
        return updated

    def remove_task(self, slug: str) -> bool:
        """Delete a task record. Returns False if it was not found."""
        tasks = self._read()
        remaining = [t for t in tasks if t.slug != slug]
        if len(remaining) == len(tasks):
            return False
        self._write(remaining)
        return True
