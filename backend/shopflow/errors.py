"""
Error taxonomy for the pipeline and marketing subsystems.

Provider-call failures are caught at the smallest possible scope and turned
into recorded outcomes (run errors, content status, per-channel results).
Only ConflictError, RunFatalError, ContentStateError and ContentNotFoundError
are meant to reach API callers or schedulers.
"""


class ShopflowError(Exception):
    """Base class for all domain errors."""


class ConflictError(ShopflowError):
    """Another pipeline run is already queued or running."""

    def __init__(self, active_run_id: str):
        self.active_run_id = active_run_id
        super().__init__(f"Pipeline already running: {active_run_id}")


class StageError(ShopflowError):
    """One pipeline stage failed. Recorded on the run; the run continues."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"{stage}: {message}")


class RunFatalError(ShopflowError):
    """An error escaped stage isolation; the run was marked failed."""

    def __init__(self, run_id: str, message: str):
        self.run_id = run_id
        super().__init__(f"Pipeline run {run_id} failed: {message}")


class ContentGenerationError(ShopflowError):
    """Caption or image generation failed for one catalog item."""


class ContentNotFoundError(ShopflowError):
    def __init__(self, content_id: int):
        self.content_id = content_id
        super().__init__(f"Content {content_id} not found")


class ContentStateError(ShopflowError):
    """Illegal transition requested on a marketing content item."""

    def __init__(self, content_id: int, status: str, action: str):
        self.content_id = content_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} content {content_id} with status: {status}")


class PublishError(ShopflowError):
    """One channel publish failed."""

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel}: {reason}")


class RateLimitedError(ShopflowError):
    """Channel cooldown has not elapsed. A deferred no-op, not a failure."""

    reason = "rate_limited"

    def __init__(self, channel: str, retry_after: float):
        self.channel = channel
        self.retry_after = retry_after
        super().__init__(f"{channel} rate limited for another {retry_after:.0f}s")
