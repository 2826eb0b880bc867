"""NoteChat Core 顶层包。

该包提供笔记插件的多 Provider 流式聊天核心，
包括配置加载、领域模型、方言适配、流式解码、
会话存储与面向宿主的调用封装。
"""

from notechat_core.domain.exceptions import is_cancellation
from notechat_core.domain.models import ChatMessage, ChatRequest, ModelDescriptor
from notechat_core.providers.chat_client import StreamingChatClient

__all__ = ["ChatMessage", "ChatRequest", "ModelDescriptor", "StreamingChatClient", "is_cancellation"]
