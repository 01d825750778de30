"""
Pixee AI Backend

Модули:
- replicate_client: HTTP клиент Replicate API
- uploader, versions, predictions, extractor, persister: этапы пайплайна
- pipeline: сборка этапов и обработка ошибок
- operations: операции над изображениями
- service: FastAPI приложение
"""

from .exceptions import (
    ConfigurationError,
    DownloadFailed,
    FileNotAccessible,
    InvalidContent,
    InvalidRequest,
    MissingPollUrl,
    NoImageFound,
    NoVersionAvailable,
    PipelineError,
    PredictionFailed,
    PredictionTimeout,
    UploadFailed,
    UpstreamError,
)
from .models import ModelDescriptor, OperationResult, PersistedArtifact, Prediction
from .operations import OPERATIONS, InputFile, run_operation
from .pipeline import PredictionPipeline, build_pipeline

__all__ = [
    "ConfigurationError",
    "DownloadFailed",
    "FileNotAccessible",
    "InvalidContent",
    "InvalidRequest",
    "MissingPollUrl",
    "NoImageFound",
    "NoVersionAvailable",
    "PipelineError",
    "PredictionFailed",
    "PredictionTimeout",
    "UploadFailed",
    "UpstreamError",
    "ModelDescriptor",
    "OperationResult",
    "PersistedArtifact",
    "Prediction",
    "OPERATIONS",
    "InputFile",
    "run_operation",
    "PredictionPipeline",
    "build_pipeline",
]
