"""统一的对话与结果数据模型。

本模块定义了在不同 Provider 方言之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求（与厂商无关）。
- ModelDescriptor: 模型列表接口返回的单个模型描述，仅用于选择界面。
- StreamEvent: 流式解码过程中产出的一次文本增量。
- AttachmentText: 外部文本提取服务给出的附件正文。

所有方言适配函数（providers.dialect）都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


# LLM 消息角色类型（与 Ollama / OpenAI 的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色。system 一般位于首位，承载文档正文、附件文本等静态上下文。
    - content: 纯文本内容。
    - meta: 附加元数据，不发给 Provider，主要用于日志与上层 UI 展示。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    调用方按需裁剪上下文后构造 ChatRequest，客户端本身不做任何上下文窗口策略。
    temperature / max_tokens 为 None 时不写入请求体。
    """

    model: str
    messages: List[ChatMessage]
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ModelDescriptor:
    """模型列表中的一项。"""

    name: str
    modified_at: Optional[str] = None
    size_bytes: Optional[int] = None


@dataclass
class StreamEvent:
    """流式返回中的一次文本增量。[DONE] 结束标记不会产生事件。"""

    text_delta: str


@dataclass
class AttachmentText:
    """附件（如 PDF）被外部服务提取后的文本。"""

    filename: str
    text: str
    page_count: int = 0
