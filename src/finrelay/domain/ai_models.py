from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def _check_base_url(value: str) -> str:
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("base_url must be an http(s) URL")
    return value.strip()


class ModelReference(BaseModel):
    """A configured upstream provider. ``name`` doubles as the upstream ``model`` value."""

    id: int
    name: str
    base_url: str
    secret_key: str = Field(repr=False, exclude=True)
    sort_order: int = 0
    created_at: str
    updated_at: str


class AIModelCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    base_url: str
    api_key: str = Field(min_length=1, repr=False)

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: str) -> str:
        return _check_base_url(value)


class AIModelUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    base_url: Optional[str] = None
    api_key: Optional[str] = Field(default=None, min_length=1, repr=False)

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _check_base_url(value)


class AIModelView(BaseModel):
    id: int
    name: str
    base_url: str
    sort_order: int
    created_at: str
    updated_at: str


class AIModelOption(BaseModel):
    id: int
    name: str
    sort_order: int = 0
