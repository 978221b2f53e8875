# app/schemas/common.py
from pydantic import BaseModel
from typing import Optional, Any


class ErrorResponse(BaseModel):
    success: bool = False
    data: Optional[Any] = None
    error: str


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    store_backend: str
    timestamp: str
