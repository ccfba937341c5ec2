"""Pydantic models for the API service."""

from datetime import datetime
import re
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from graph.model import GraphModel


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TITLE_MAX_LENGTH = 500


class RegisterRequest(BaseModel):
    """User registration request."""

    email: str
    password: str = Field(min_length=8, description="Password (minimum 8 characters)")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate and normalize email address."""
        v = v.strip().lower()
        if not _EMAIL_RE.match(v):
            raise ValueError("Invalid email address")
        return v


class LoginRequest(BaseModel):
    """User login request."""

    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email address to lowercase."""
        return v.strip().lower()


class LoginResponse(BaseModel):
    """User login response with JWT access token."""

    access_token: str
    token_type: str = "bearer"  # noqa: S105  # nosec B105
    expires_in: int  # seconds until expiration


class UserResponse(BaseModel):
    """User information response."""

    id: UUID
    email: str
    is_active: bool
    created_at: datetime


def _clean_title(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("title must not be empty")
    if "\x00" in v:
        raise ValueError("title must not contain NUL characters")
    if len(v) > _TITLE_MAX_LENGTH:
        raise ValueError(f"title must be at most {_TITLE_MAX_LENGTH} characters")
    return v


class CreateMindMapRequest(GraphModel):
    """Body of POST /api/mindmaps."""

    title: str
    description: str | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)


class ReplaceMindMapRequest(GraphModel):
    """Body of PUT /api/mindmaps/{id}: metadata plus the complete graph.

    Nodes and edges stay raw JSON here and are parsed by
    ``graph.validation.parse_graph``, so a malformed node is reported next to
    every other graph violation. An ``ownerId`` in the body is ignored.
    ``expectedUpdatedAt`` opts in to a compare-and-swap against the stored
    ``updatedAt``.
    """

    title: str
    description: str | None = None
    nodes: list[Any] = Field(default_factory=list)
    edges: list[Any] = Field(default_factory=list)
    expected_updated_at: datetime | None = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)
