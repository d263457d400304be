from typing import Optional


class SyncError(Exception):
    """Base class for every failure the sync engine reports."""

    kind = 'sync_error'
    retryable = False


class ValidationError(SyncError):
    """Malformed canonical or platform data. Never retried."""

    kind = 'validation_error'


class MalformedRecord(ValidationError):
    kind = 'malformed_record'

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"Malformed {platform} record: {message}")


class UnmappedStatus(ValidationError):
    kind = 'unmapped_status'

    def __init__(self, platform: str, value):
        self.platform = platform
        self.value = value
        super().__init__(f"Status {value!r} has no mapping for platform {platform}.")


class InvalidAmount(ValidationError):
    kind = 'invalid_amount'


class TransientNetworkError(SyncError):
    kind = 'transient_network_error'
    retryable = True


class RateLimited(SyncError):
    kind = 'rate_limited'
    retryable = True

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class AuthExpired(SyncError):
    kind = 'auth_expired'


class IdentityConflict(SyncError):
    kind = 'identity_conflict'


class PlatformUserError(SyncError):
    """Business-rule rejection reported by the platform, kept verbatim."""

    kind = 'platform_user_error'

    def __init__(self, platform: str, user_errors: list, status_code: Optional[int] = None):
        self.platform = platform
        self.user_errors = list(user_errors)
        self.status_code = status_code
        super().__init__(f"{platform} rejected the request: {'; '.join(self.user_errors)}")


class PartialStepFailure(SyncError):
    """A pipeline step failed once its retry budget was spent."""

    kind = 'partial_step_failure'

    def __init__(self, step: str, cause: Exception, checkpoint: Optional[str] = None):
        self.step = step
        self.cause = cause
        self.checkpoint = checkpoint
        super().__init__(f"Step {step} failed ({getattr(cause, 'kind', type(cause).__name__)}): {cause}")


class SyncInProgress(SyncError):
    kind = 'sync_in_progress'
    retryable = True
