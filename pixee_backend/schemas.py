"""
Pydantic модели запросов и ответов HTTP API.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TextToImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    width: Optional[int] = None
    height: Optional[int] = None
    negative_prompt: Optional[str] = None
    num_outputs: Optional[int] = None


class OperationResponse(BaseModel):
    success: bool = True
    message: str
    downloadUrl: str
    allImages: Optional[List[str]] = None
    operation: str
    prediction_id: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    operation: Optional[str] = None


class OperationsResponse(BaseModel):
    operations: List[str]


class StylesResponse(BaseModel):
    success: bool = True
    styles: Dict[str, Dict[str, Any]]
