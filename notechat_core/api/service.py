"""对外 API 服务模块。

提供简化的函数接口供宿主插件调用。
"""

from typing import Any, Callable, Dict, List, Optional

from notechat_core.agents.note_assistant import NoteAssistant
from notechat_core.config.settings import settings
from notechat_core.domain.conversation import ConversationStore
from notechat_core.infrastructure.logging.logger import logger
from notechat_core.infrastructure.storage.memory_store import CallbackConversationStore
from notechat_core.providers.chat_client import StreamingChatClient


_store: Optional[ConversationStore] = None
_assistant: Optional[NoteAssistant] = None


def get_default_assistant() -> NoteAssistant:
    """获取默认的 NoteAssistant 实例（单例）。"""
    global _store, _assistant
    if _store is None:
        _store = CallbackConversationStore()
    if _assistant is None:
        _assistant = NoteAssistant(
            client=StreamingChatClient(settings),
            store=_store,
            settings=settings,
        )
    return _assistant


def reset_default_assistant() -> None:
    global _store, _assistant
    _store = None
    _assistant = None


async def run_note_chat(
    note_id: str,
    user_input: str,
    document_text: Optional[str] = None,
    model: Optional[str] = None,
    on_token: Optional[Callable[[str], None]] = None,
) -> Optional[Dict[str, Any]]:
    """运行一次笔记聊天。

    Args:
        note_id: 笔记 ID，会话按它归组
        user_input: 用户输入内容
        document_text: 笔记正文，作为 system 上下文（可选）
        model: 指定模型（可选）
        on_token: 流式增量回调（可选）

    Returns:
        包含 note_id 与助手回复的字典；用户中止或输入为空时返回 None

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    try:
        reply = await get_default_assistant().send(
            note_id,
            user_input,
            document_text=document_text,
            model=model,
            on_token=on_token,
        )
    except Exception as e:
        logger.error(f"Note chat failed: {e}", extra={"extra": {
            "note_id": note_id,
            "error": str(e),
        }})
        raise
    if reply is None:
        return None
    return {"note_id": note_id, "role": reply.role, "content": reply.content}


async def list_models() -> List[Dict[str, Any]]:
    """列出可用模型，失败时为空列表。"""
    models = await get_default_assistant().client.fetch_models()
    return [
        {"name": m.name, "modified_at": m.modified_at, "size": m.size_bytes}
        for m in models
    ]


def get_conversation_messages(note_id: str) -> List[Dict[str, Any]]:
    """获取某篇笔记的全部会话消息。"""
    assistant = get_default_assistant()
    return [m.to_payload() for m in assistant.store.get_messages(note_id)]


def stop_generation() -> None:
    get_default_assistant().stop()
