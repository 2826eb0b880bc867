"""LLM Provider 集成层。

该包下的模块负责：
- 定义客户端抽象接口 (base)。
- 方言判断、请求构造与响应解析 (dialect)。
- 流式响应的跨块解码 (stream_decoder)。
- 托管服务的预置配置 (registry)。
- 对外的流式聊天客户端 (chat_client)。
"""

from typing import Optional

from notechat_core.config.settings import settings
from notechat_core.providers.base import ChatClient
from notechat_core.providers.chat_client import StreamingChatClient
from notechat_core.providers.dialect import Dialect, detect_dialect, resolve_endpoint


def create_client(cfg=None) -> ChatClient:
    """根据配置创建客户端实例，默认取全局配置。"""

    return StreamingChatClient(cfg if cfg is not None else settings)


__all__ = [
    "ChatClient",
    "Dialect",
    "StreamingChatClient",
    "create_client",
    "detect_dialect",
    "resolve_endpoint",
]
