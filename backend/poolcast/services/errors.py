"""Error types raised by the forecasting pipeline.

Services translate the expected ones into structured results (``success``
flags and counts); routers map whatever escapes into error envelopes.
"""


class PipelineError(Exception):
    """Base class for pipeline failures."""


class InsufficientDataError(PipelineError, ValueError):
    """Raised when a stage does not have enough rows to run.

    Example: ``raise InsufficientDataError("Need at least 100 rows, got 23")``
    """


class TrainingError(PipelineError):
    """Raised when model fitting or hold-out evaluation fails."""


class ModelNotAvailableError(PipelineError, LookupError):
    """Raised when no active model version exists or its artifact cannot be loaded."""


class InferenceError(PipelineError):
    """Raised by an inference engine when a prediction batch cannot be produced."""


class InvalidHorizonError(PipelineError, ValueError):
    """Raised for horizon strings that are malformed or outside 1..MAX_HORIZON_HOURS."""


class UpstreamError(PipelineError):
    """Raised when an external market-data feed responds with an unusable payload."""
