from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(min_length=1)
    manager_id: int | None = Field(default=None, alias="managerId", strict=True)
    show_thinking: bool = Field(default=False, alias="showThinking", strict=True)
    api_key: str | None = Field(default=None, alias="apiKey")

    def to_api_messages(self) -> list[dict]:
        return [{"role": m.role, "content": m.content} for m in self.messages]


class ErrorResponse(BaseModel):
    error: str
    code: Literal["INVALID_REQUEST", "API_KEY_MISSING"]
    details: list[dict] | None = None
