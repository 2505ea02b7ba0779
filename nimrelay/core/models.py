"""Inbound transport models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    # name / tool_call_id 等额外字段原样透传
    model_config = ConfigDict(extra="allow")

    role: str
    content: str | list | None = ""


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str = Field(min_length=1)
    messages: list[ChatMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    stream: bool | None = None

    def has_leading_system_message(self) -> bool:
        return bool(self.messages) and self.messages[0].role == "system"
