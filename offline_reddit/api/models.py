"""Pydantic models for API request/response structures.

This module defines the standard response and error envelopes used across all API endpoints,
plus the request bodies of the subscription and sync endpoints.

Response Structure:
    All successful responses use ResponseEnvelope with:
    - data: The actual response payload (any type)
    - meta: Metadata including timestamp, version, and optional total count

Error Structure:
    All error responses use ErrorEnvelope with:
    - error: ErrorDetail containing code and message
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class MetaModel(BaseModel):
    """Metadata included in all successful responses.

    Attributes:
        timestamp: ISO 8601 formatted UTC timestamp of the response
        version: API version string (currently hardcoded as "1.0")
        total: Optional total count of items
    """
    timestamp: str
    version: str
    total: Optional[int] = None


class ResponseEnvelope(BaseModel):
    """Standard response envelope for all successful API responses.

    Attributes:
        data: The actual response payload (type varies by endpoint)
        meta: Metadata about the response (timestamp, version, total)
    """
    data: Any
    meta: MetaModel


class ErrorDetail(BaseModel):
    """Error details included in error responses.

    Attributes:
        code: Machine-readable error code (see responses.py for constants)
        message: Human-readable error message
    """
    code: str
    message: str


class ErrorEnvelope(BaseModel):
    """Standard error envelope for all error responses.

    Attributes:
        error: Error details including code and message
    """
    error: ErrorDetail


class SubscriptionCreate(BaseModel):
    """Body of POST /subscriptions.

    Attributes:
        name: Feed name as typed, e.g. "AskScience + askengineers"
        add_anyway: Subscribe without checking that the feed exists
    """
    name: str = Field(min_length=1, max_length=200)
    add_anyway: bool = False


class MasterSyncRequest(BaseModel):
    """Body of POST /sync.

    Attributes:
        post_limit: Top posts per feed whose comments are cached
            (None uses the default quick-sync limit)
        skip: Feed names to leave out of the run
    """
    post_limit: Optional[int] = Field(default=None, ge=1, le=100)
    skip: List[str] = Field(default_factory=list)


class FeedSyncRequest(BaseModel):
    """Optional body of POST /sync/{name}."""
    post_limit: Optional[int] = Field(default=None, ge=1, le=100)
