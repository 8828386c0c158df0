"""Error taxonomy shared by the task, worktree and merge layers."""


class HiveError(Exception):
    """Base class for every failure the command surfaces report to the user."""


class NotARepositoryError(HiveError):
    """Raised when an operation runs outside a git repository."""


class NotFoundError(HiveError):
    """Raised when a task or worktree slug does not exist."""


class AlreadyExistsError(HiveError):
    """Raised when a worktree path or branch name is already taken."""


class InvalidStateError(HiveError):
    """Raised when an operation needs an active task but got a terminal one."""


class DirtyWorktreeError(HiveError):
    """Raised when uncommitted changes block a merge or a non-forced drop."""

    def __init__(self, slug: str, changed_files: int = 0, message: str | None = None):
        self.slug = slug
        self.changed_files = changed_files
        super().__init__(
            message
            or f'Task "{slug}" has uncommitted changes. Commit or discard them first.'
        )


class ValidationError(HiveError):
    """Raised when task fields or config values are malformed."""


class DuplicateSlugError(ValidationError):
    """Raised when a task slug is already recorded."""


class ImmutableFieldError(ValidationError):
    """Raised when an update tries to change a slug-derived field."""


class ConfigKeyError(ValidationError):
    """Raised for unknown configuration keys."""


class AIUnavailableError(HiveError):
    """Raised when the review service is disabled, misconfigured or unreachable."""

    def __init__(self, message: str, hint: str | None = None):
        self.hint = hint
        super().__init__(message)
