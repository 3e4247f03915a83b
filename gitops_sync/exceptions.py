"""Exceptions related to gitops-sync."""

__all__ = [
    "GitOpsException",
    "InputException",
    "CommandException",
    "SourceUnavailable",
    "RevisionNotFound",
    "ClusterUnreachable",
    "PermissionDenied",
    "ConflictingIdentity",
    "PartialApplyFailure",
    "ReconcileTimeout",
    "ApplyRejected",
    "ObjectNotFoundError",
]


class GitOpsException(Exception):
    """Generic base exception used for this library."""

    retryable: bool = True
    """Whether retrying without a source or config change can succeed."""


class InputException(GitOpsException):
    """Raised when the input files or values are not formatted as expected."""

    retryable = False


class CommandException(GitOpsException):
    """Raised when there is a failure running a subcommand."""


class KustomizeException(CommandException):
    """Raised when there is a failure running a kustomize command."""


class SourceUnavailable(GitOpsException):
    """Raised when the manifest source repository cannot be read."""


class RevisionNotFound(GitOpsException):
    """Raised when a revision reference does not resolve to a commit."""


class ClusterUnreachable(GitOpsException):
    """Raised when the cluster control plane cannot be reached."""


class PermissionDenied(GitOpsException):
    """Raised when the cluster refuses an operation for lack of access."""

    retryable = False


class ConflictingIdentity(InputException):
    """Raised when two desired objects share one identity."""

    def __init__(self, identity: str, sources: list[str] | None = None) -> None:
        detail = f" (from {', '.join(sources)})" if sources else ""
        super().__init__(f"Duplicate object identity {identity}{detail}")
        self.identity = identity


class ApplyRejected(GitOpsException):
    """Raised when the cluster rejects a single object, e.g. failed validation."""


class PartialApplyFailure(GitOpsException):
    """Raised when some operations in a sync plan failed."""

    def __init__(self, completed: int, failed: int, message: str | None) -> None:
        super().__init__(
            f"Sync applied {completed} operations, {failed} failed: "
            f"{message or 'Unknown error'}"
        )
        self.completed = completed
        self.failed = failed


class ReconcileTimeout(GitOpsException):
    """Raised when a cluster or source call exceeds its deadline."""


class ObjectNotFoundError(GitOpsException):
    """Raised when an object is not found in the cluster or registry."""
