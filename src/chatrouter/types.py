from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

AUTO_SELECTION = "auto"


class ImageURL(BaseModel):
    url: str


class ContentPart(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Literal["text", "image_url"]
    text: Optional[str] = None
    image_url: Optional[ImageURL] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "ContentPart":
        if self.type == "text" and self.text is None:
            raise ValueError("text parts require 'text'")
        if self.type == "image_url" and self.image_url is None:
            raise ValueError("image_url parts require 'image_url'")
        return self


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return next((part.text or "" for part in self.content if part.type == "text"), "")

    @property
    def image_count(self) -> int:
        if isinstance(self.content, str):
            return 0
        return sum(1 for part in self.content if part.type == "image_url")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RouterRequest(BaseModel):
    messages: List[ChatMessage]
    selection: str = AUTO_SELECTION
    image_refs: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_system_first(self) -> "RouterRequest":
        system_positions = [i for i, m in enumerate(self.messages) if m.role == "system"]
        if system_positions != [0]:
            raise ValueError("messages must contain exactly one system message, placed first")
        return self

    @property
    def is_auto(self) -> bool:
        return self.selection == AUTO_SELECTION


class RouterOutcome(BaseModel):
    success: bool
    response: Optional[str] = None
    model_used: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_tag(self) -> "RouterOutcome":
        if self.success:
            if self.error is not None:
                raise ValueError("successful outcome cannot carry an error")
            if not self.response or not self.response.strip():
                raise ValueError("successful outcome requires a non-empty response")
            if not self.model_used:
                raise ValueError("successful outcome requires model_used")
        else:
            if self.response is not None or self.model_used is not None:
                raise ValueError("failed outcome cannot carry a response")
            if not self.error:
                raise ValueError("failed outcome requires an error message")
        return self

    @classmethod
    def ok(cls, response: str, model_used: str) -> "RouterOutcome":
        return cls(success=True, response=response, model_used=model_used)

    @classmethod
    def fail(cls, error: str) -> "RouterOutcome":
        return cls(success=False, error=error)

    def to_payload(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "response": self.response, "modelUsed": self.model_used}
        return {"success": False, "error": self.error}


class Attachment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filename: str = ""
    url: str
    type: str = ""
    size: int = 0


class ChatSendRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    chat_id: Optional[str] = Field(default=None, alias="chatId")
    message: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    model: str = AUTO_SELECTION
