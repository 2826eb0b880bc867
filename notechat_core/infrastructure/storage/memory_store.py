from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from notechat_core.domain.conversation import ConversationEntry, ConversationStore
from notechat_core.domain.exceptions import BusinessError
from notechat_core.domain.models import ChatMessage

SaveCallback = Callable[[Dict[str, Any]], Awaitable[None]]


def _to_millis(dt: Optional[datetime]) -> Optional[int]:
    if dt is None:
        return None
    return int(dt.timestamp() * 1000)


def _from_millis(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class CallbackConversationStore(ConversationStore):
    """按笔记 ID 保存会话，每次修改后把快照交给注入的 save 回调持久化。

    快照是纯 dict（note_id -> {noteId, messages, createdAt, updatedAt}），
    具体存到哪里、用什么格式由宿主决定。
    """

    def __init__(
        self,
        save_callback: Optional[SaveCallback] = None,
        snapshot: Optional[Mapping[str, Any]] = None,
    ):
        self._save_callback = save_callback
        self._conversations: Dict[str, ConversationEntry] = {}
        if snapshot:
            self._load(snapshot)

    def get_messages(self, note_id: str) -> List[ChatMessage]:
        entry = self._conversations.get(note_id)
        return list(entry.messages) if entry else []

    async def add_message(self, note_id: str, message: ChatMessage) -> None:
        now = datetime.now(timezone.utc)
        entry = self._conversations.get(note_id)
        if entry is None:
            entry = ConversationEntry(note_id=note_id, created_at=now, updated_at=now)
            self._conversations[note_id] = entry
        entry.messages.append(message)
        entry.updated_at = now
        await self._persist()

    async def add_user_message(self, note_id: str, content: str) -> None:
        await self.add_message(note_id, ChatMessage(role="user", content=content))

    async def add_assistant_message(self, note_id: str, content: str) -> None:
        await self.add_message(note_id, ChatMessage(role="assistant", content=content))

    async def clear_conversation(self, note_id: str) -> None:
        self._conversations.pop(note_id, None)
        await self._persist()

    async def clear_all(self) -> None:
        self._conversations.clear()
        await self._persist()

    def has_conversation(self, note_id: str) -> bool:
        return note_id in self._conversations

    def get_conversation_context(self, note_id: str, max_messages: int = 20) -> List[ChatMessage]:
        messages = self.get_messages(note_id)
        if len(messages) <= max_messages:
            return messages
        return messages[-max_messages:]

    def list_conversations(self) -> Dict[str, ConversationEntry]:
        return dict(self._conversations)

    def snapshot(self) -> Dict[str, Any]:
        return {
            note_id: {
                "noteId": entry.note_id,
                "messages": [m.to_payload() for m in entry.messages],
                "createdAt": _to_millis(entry.created_at),
                "updatedAt": _to_millis(entry.updated_at),
            }
            for note_id, entry in self._conversations.items()
        }

    async def _persist(self) -> None:
        if self._save_callback is None:
            return
        await self._save_callback(self.snapshot())

    def _load(self, snapshot: Mapping[str, Any]) -> None:
        for note_id, raw in snapshot.items():
            try:
                messages = [
                    ChatMessage(role=m["role"], content=m.get("content") or "")
                    for m in raw.get("messages") or []
                ]
                self._conversations[note_id] = ConversationEntry(
                    note_id=raw.get("noteId") or note_id,
                    messages=messages,
                    created_at=_from_millis(raw.get("createdAt")),
                    updated_at=_from_millis(raw.get("updatedAt")),
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise BusinessError(code="STORE_READ_ERROR", message=f"Invalid history for {note_id!r}: {e}")
