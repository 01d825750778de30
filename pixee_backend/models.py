"""
Data structures shared by the pipeline components.

Модели:
    - ModelDescriptor: идентификатор модели (``owner/slug`` или ``owner/slug:version``)
    - Prediction: асинхронная задача upstream API
    - PersistedArtifact: сохраненный локально результат
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STARTING = "starting"
PROCESSING = "processing"
SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELED = "canceled"

TERMINAL_STATUSES = frozenset({SUCCEEDED, FAILED, CANCELED})


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    name: str = ""

    @property
    def slug(self) -> str:
        """Model id without the pinned version part."""
        return self.id.split(":", 1)[0]

    @property
    def is_pinned(self) -> bool:
        return ":" in self.id


@dataclass
class Prediction:
    """
    One asynchronous invocation of a hosted model.

    Mutated only by applying polling responses; terminal once ``status`` is
    one of ``succeeded``, ``failed`` or ``canceled``.
    """

    id: Optional[str]
    version: Optional[str]
    status: str
    input: Dict[str, Any] = field(default_factory=dict)
    output: Any = None
    poll_url: Optional[str] = None
    error: Any = None
    logs: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], version: Optional[str] = None) -> "Prediction":
        urls = payload.get("urls") or {}
        return cls(
            id=payload.get("id"),
            version=payload.get("version") or version,
            status=str(payload.get("status") or STARTING),
            input=payload.get("input") or {},
            output=payload.get("output"),
            poll_url=urls.get("get") if isinstance(urls, dict) else None,
            error=payload.get("error"),
            logs=payload.get("logs"),
        )

    def update(self, payload: Dict[str, Any]) -> None:
        """Apply a polling response to this job."""
        self.status = str(payload.get("status") or self.status)
        self.output = payload.get("output", self.output)
        self.error = payload.get("error", self.error)
        self.logs = payload.get("logs", self.logs)
        if payload.get("id"):
            self.id = payload["id"]
        urls = payload.get("urls")
        if isinstance(urls, dict) and urls.get("get"):
            self.poll_url = urls["get"]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    def describe_failure(self) -> str:
        if self.error:
            return str(self.error)
        if self.logs:
            return self.logs[-500:]
        return f"Prediction ended with status {self.status}"


@dataclass(frozen=True)
class PersistedArtifact:
    filename: str
    absolute_path: str
    public_path: str


@dataclass
class OperationResult:
    operation: str
    message: str
    artifacts: List[PersistedArtifact]
    prediction_id: Optional[str] = None

    @property
    def download_url(self) -> str:
        return self.artifacts[0].public_path

    @property
    def all_urls(self) -> List[str]:
        return [artifact.public_path for artifact in self.artifacts]
