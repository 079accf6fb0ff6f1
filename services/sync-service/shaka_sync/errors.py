"""Error taxonomy for the sync service."""


class SyncError(Exception):
    """Base class for all sync failures."""

    retryable = False


class StoreError(SyncError):
    """A document-store operation failed."""


class TransientStoreError(StoreError):
    """Network / timeout class failure; safe to retry the whole job."""

    retryable = True


class PartialBatchFailure(StoreError):
    """
    One or more batches of a single commit failed.

    Batches that did commit are NOT rolled back; re-running the job converges
    the remaining documents.
    """

    def __init__(
        self,
        committed_count: int,
        failed_count: int,
        batch_count: int,
        failed_batches: list[int],
        errors: list[BaseException],
    ) -> None:
        self.committed_count = committed_count
        self.failed_count = failed_count
        self.batch_count = batch_count
        self.failed_batches = failed_batches
        self.errors = errors
        super().__init__(
            f"{len(failed_batches)}/{batch_count} batches failed "
            f"({committed_count} writes committed, {failed_count} not applied): "
            f"{errors[0] if errors else 'unknown error'}"
        )

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return bool(self.errors) and all(
            getattr(e, "retryable", False) for e in self.errors
        )


class PropagationFailed(SyncError):
    """Raised by the reactive path so the caller (platform) can log / retry."""

    def __init__(self, user_id: str, cause: BaseException) -> None:
        self.user_id = user_id
        self.cause = cause
        super().__init__(f"Failed to update displayName for user {user_id}: {cause}")

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return getattr(self.cause, "retryable", False)


class AuthorizationError(SyncError):
    """Missing or wrong bearer token."""


class CountdownCancelled(SyncError):
    """The grace period before a destructive run was interrupted."""
