"""
Conversation turns and their mapping to LangChain messages.
"""

from dataclasses import dataclass
from enum import Enum

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from ..errors import UnknownRole


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def parse_role(role: str) -> Role:
    """Parse a stored role string, raising UnknownRole for anything else."""
    try:
        return Role(role)
    except ValueError:
        raise UnknownRole(role) from None


@dataclass(frozen=True)
class ConversationTurn:
    """One message of the conversation. Immutable once created."""

    role: Role
    content: str
    token_count: int
    sequence_index: int

    def to_dict(self) -> dict:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ArchivedMemory:
    """An evicted turn stored in long-term memory under its archival id."""

    id: int
    content: str
    embedding: tuple[float, ...]

    def to_dict(self) -> dict:
        return {"id": self.id, "content": self.content, "embedding": list(self.embedding)}


_MESSAGE_TYPES = {
    Role.SYSTEM: SystemMessage,
    Role.USER: HumanMessage,
    Role.ASSISTANT: AIMessage,
}


def to_message(role: Role, content: str) -> BaseMessage:
    """Convert a role/content pair into the matching LangChain message."""
    return _MESSAGE_TYPES[role](content=content)


def messages_from_dicts(messages: list[dict]) -> list[BaseMessage]:
    """Convert ``[{role, content}, ...]`` request dicts into LangChain messages."""
    return [to_message(parse_role(m["role"]), m["content"]) for m in messages]


def message_text(msg) -> str:
    """Plain text of a message or chunk, skipping thinking/reasoning blocks."""
    content = getattr(msg, "content", msg)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content) if content else ""
