"""提示词拼装工具。

- create_attachment_prompt: 把外部提取好的附件文本拼成“请总结以下文档”提示词。
- build_document_context: 把当前笔记正文包装成 system 消息。
- apply_quick_action: 快捷操作（总结/解释/扩写/润色）的提示词拼接。
"""

from typing import Iterable, Optional

from notechat_core.domain.models import AttachmentText, ChatMessage

DEFAULT_ATTACHMENT_CHAR_LIMIT = 8000


def create_attachment_prompt(
    attachments: Iterable[AttachmentText],
    char_limit: int = DEFAULT_ATTACHMENT_CHAR_LIMIT,
) -> str:
    """拼接附件文本，每个附件只取前 char_limit 个字符。"""

    prompt = "Summarize the following document(s):\n\n"
    for att in attachments:
        prompt += f"--- {att.filename} ({att.page_count} pages) ---\n"
        prompt += att.text[:char_limit]
        prompt += "\n\n"
    return prompt


def build_document_context(document_text: Optional[str]) -> Optional[ChatMessage]:
    if not document_text or not document_text.strip():
        return None
    return ChatMessage(
        role="system",
        content=(
            "You are a writing assistant embedded in a note-taking app. "
            "The user's current note is provided below for context.\n\n"
            f"{document_text}"
        ),
    )


def apply_quick_action(prompt: str, text: str) -> str:
    return f"{prompt}\n\n{text}"
