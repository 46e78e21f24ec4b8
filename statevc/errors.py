"""statevc error types."""


class StateError(Exception):
    """Base class for all statevc errors."""


class NotFound(StateError):
    """Raised when a key, branch, tag, remote or commit does not exist."""


class AlreadyExists(StateError):
    """Raised when creating a branch, tag or remote whose name is taken,
    or initializing a repository where one already exists."""


class InvalidRepository(StateError):
    """Raised when the repository does not satisfy an operation's assumption.

    For example a merge commit met while listing linear ancestors, diverged
    children while listing descendants, or an ambiguous merge base.
    """


class BackendError(StateError):
    """Raised when the underlying storage reports a failure.

    The original exception is chained as ``__cause__``.
    """


class UnknownError(StateError):
    """Raised for failures that fit no other category."""
