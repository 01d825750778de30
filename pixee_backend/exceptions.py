"""
Typed errors raised by the prediction pipeline.

Every error carries a stable ``category`` label that the HTTP layer maps to a
status code and returns to the client alongside the message.
"""
from typing import Any, Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    category = "processing_error"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.stage = stage

    def to_dict(self) -> dict:
        return {"error": self.category, "message": self.message}


class ConfigurationError(PipelineError):
    """Required configuration (usually the API token) is missing."""

    category = "configuration_error"


class InvalidRequest(PipelineError):
    category = "invalid_request"


class FileNotAccessible(PipelineError):
    """Local input is missing, empty or unreadable."""

    category = "file_not_accessible"


class UploadFailed(PipelineError):
    """Remote upload exhausted its retries."""

    category = "upload_failed"


class NoVersionAvailable(PipelineError):
    category = "no_version_available"


class UpstreamError(PipelineError):
    """Non-2xx response from the upstream prediction API."""

    category = "upstream_error"

    def __init__(self, status: int, body: Any, message: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(message or f"Upstream API error {status}: {_describe_body(body)}")


class MissingPollUrl(PipelineError):
    category = "missing_poll_url"


class PredictionTimeout(PipelineError):
    category = "prediction_timeout"


class PredictionFailed(PipelineError):
    """Job reached a terminal state other than ``succeeded``."""

    category = "prediction_failed"

    def __init__(self, message: str, prediction=None, stage: Optional[str] = None):
        super().__init__(message, stage=stage)
        self.prediction = prediction


class NoImageFound(PipelineError):
    category = "no_image_found"


class InvalidContent(PipelineError):
    category = "invalid_content"


class DownloadFailed(PipelineError):
    category = "download_failed"


def _describe_body(body: Any) -> str:
    """Pick the most useful message out of an upstream error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("detail"):
            return str(body["detail"])
        if isinstance(error, str) and error:
            return error
    text = str(body)
    return text[:500]
