from enum import Enum

from pydantic import BaseModel, Field, field_serializer

from unillm.streaming import ToolCall


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    role: MessageRole
    content: str = ""

    @field_serializer('role')
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)


class ToolCallRequestMessage(Message):
    """Assistant turn that asked for one or more tool calls."""

    tool_calls: list[ToolCall] = Field(default_factory=list)
    thinking: str | None = None

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list[ToolCall]) -> list[dict]:
        return [t.to_openai() for t in tool_calls]


class ToolCallResultMessage(Message):
    tool_call_id: str
    tool_name: str = ""
    is_error: bool = False
