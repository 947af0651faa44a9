from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field, field_validator, model_validator


DATE_FORMAT = "%Y-%m-%d"


class ChatTranscript(BaseModel):
    id: int
    model_id: int
    user_id: int = 0
    user_text: str
    ai_text: str
    created_at: str


class AnalysisTranscript(BaseModel):
    id: int
    model_id: int
    user_id: int = 0
    start_date: str
    end_date: str
    result: str
    created_at: str


class ChatTranscriptPage(BaseModel):
    total: int
    page: int
    page_size: int
    list: List[ChatTranscript]


class AnalysisTranscriptPage(BaseModel):
    total: int
    page: int
    page_size: int
    list: List[AnalysisTranscript]


class ChatRequest(BaseModel):
    model_id: int = Field(gt=0)
    message: str = Field(min_length=1)


class AnalysisRequest(BaseModel):
    """Bill analysis trigger; ``prompt`` is built by the caller from its own records."""

    model_id: int = Field(gt=0)
    start_date: str
    end_date: str
    prompt: str = Field(min_length=1)

    @field_validator("start_date", "end_date")
    @classmethod
    def _validate_date(cls, value: str) -> str:
        value = value.strip()
        try:
            datetime.strptime(value, DATE_FORMAT)
        except ValueError:
            raise ValueError("dates must use the YYYY-MM-DD format")
        # strptime also takes single-digit months and days
        if len(value) != 10:
            raise ValueError("dates must use the YYYY-MM-DD format")
        return value

    @model_validator(mode="after")
    def _validate_range(self) -> "AnalysisRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self
