"""聊天客户端抽象接口。

上层（NoteAssistant、UI 代码）不直接依赖 HTTP 细节，而是依赖此协议：

- StreamingChatClient 是唯一的生产实现，内部按方言分派。
- 测试或其他宿主可以提供自己的实现，只要满足下面的契约。
"""

from typing import Callable, List, Optional, Protocol

from notechat_core.domain.models import ChatMessage, ChatRequest, ModelDescriptor


class ChatClient(Protocol):
    """LLM 聊天客户端协议。

    实现者需要提供：
    - chat(req, on_token): 执行一次对话调用，流式时按顺序回调增量。
    - fetch_models(): 列出模型，失败时返回空列表而不是抛异常。
    - abort(): 中止当前调用，幂等。
    """

    name: str

    async def chat(
        self,
        req: ChatRequest,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> ChatMessage:
        ...

    async def fetch_models(self) -> List[ModelDescriptor]:
        ...

    def abort(self) -> None:
        ...

    def update_settings(self, settings) -> None:
        ...

    def get_current_model(self) -> str:
        ...
