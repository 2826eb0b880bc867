from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Protocol

from .models import ChatMessage


@dataclass
class ConversationEntry:
    note_id: str
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ConversationStore(Protocol):
    def get_messages(self, note_id: str) -> List[ChatMessage]:
        ...

    async def add_message(self, note_id: str, message: ChatMessage) -> None:
        ...

    async def clear_conversation(self, note_id: str) -> None:
        ...

    async def clear_all(self) -> None:
        ...

    def has_conversation(self, note_id: str) -> bool:
        ...

    def get_conversation_context(self, note_id: str, max_messages: int = 20) -> List[ChatMessage]:
        ...

    def list_conversations(self) -> Dict[str, ConversationEntry]:
        ...
