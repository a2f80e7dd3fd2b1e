"""
Pydantic models for the HTTP layer
"""

from typing import List

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str = "0.1.0"
    languages: List[str] = []
    isolation: str = "local"


class RateLimitResponse(BaseModel):
    message: str
    retryAfter: int
