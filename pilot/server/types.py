from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Base(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ChatRequest(_Base):
    session_id: str | None = Field(default=None, alias="sessionId")
    message: str = Field(min_length=1)
    locale: str | None = None
    context: dict[str, Any] | None = None


class ChatResponse(_Base):
    session_id: str = Field(alias="sessionId")
    text: str
    ui_type: str | None = Field(default=None, alias="uiType")
    ui_data: Any = Field(default=None, alias="uiData")
    suggestions: list[str] = Field(default_factory=list)
    is_partial: bool = Field(default=False, alias="isPartial")
    detected_language: str = Field(default="en", alias="detectedLanguage")


class CreateSessionRequest(_Base):
    session_id: str | None = Field(default=None, alias="sessionId")
