"""Exception hierarchy for the subtitle resegmentation pipeline."""


class SubtitlePipelineError(Exception):
    """Base class for exceptions raised by this package."""
    pass


class ConfigurationError(SubtitlePipelineError):
    """Raised for invalid or incomplete configuration."""
    pass


class LLMError(SubtitlePipelineError):
    """A chat completion call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FatalLLMError(LLMError):
    """Bad credentials, unknown model, 401/403/404. Never retried."""
    pass


class RetryableLLMError(LLMError):
    """Timeouts, connection resets, 429 and 5xx responses."""
    pass


class ResegmentError(SubtitlePipelineError):
    """The LLM produced nothing usable for sentence splitting."""
    pass


class AlignmentError(ResegmentError):
    """Too many consecutive LLM sentences could not be matched to the transcript."""
    pass


class PipelineError(SubtitlePipelineError):
    """The pipeline cannot start or continue (empty input, concurrent run)."""
    pass


class OperationCancelled(SubtitlePipelineError):
    """The run was cancelled through its CancellationToken."""
    pass
