"""
Request bodies for the HTTP API.
Posts are validated by the queue itself so its error messages reach the caller,
hence the loose `list[dict]` typing here.
"""
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class EnqueueRequest(BaseModel):
    posts: Optional[list[dict]] = None
    keyword: Optional[str] = None


class SubmitResultRequest(BaseModel):
    key: str = Field(..., min_length=1)
    result: Optional[Any] = None
    client_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("client_id", "clientId"),
    )


class CleanupRequest(BaseModel):
    max_age: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("max_age", "maxAge"),
        description="Milliseconds; completed items at least this old are deleted",
    )


class ResetStuckRequest(BaseModel):
    timeout: Optional[int] = Field(default=None, ge=0, description="Lease timeout in milliseconds")


class RequeueRequest(BaseModel):
    key: str = Field(..., min_length=1)


class FilterContextRequest(BaseModel):
    keyword: Optional[str] = None
    context: Optional[str] = None
    posts: list[dict] = Field(default_factory=list)


class KeywordRequest(BaseModel):
    keyword: Optional[Any] = None


class ClearFilterRequest(BaseModel):
    keyword: str = Field(..., min_length=1)
    post_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("post_ids", "postIds"),
    )
