"""笔记助手：把会话存储、提示词拼装与流式客户端串起来。

这是 StreamingChatClient 的调用方，负责客户端刻意不做的事情：
上下文裁剪、模型选择、历史读写，以及把用户主动中止当作静默结束。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from notechat_core.domain.conversation import ConversationStore
from notechat_core.domain.exceptions import CancellationFault, ConfigurationError
from notechat_core.domain.models import AttachmentText, ChatMessage, ChatRequest
from notechat_core.infrastructure.logging.logger import logger
from notechat_core.prompts import apply_quick_action, build_document_context, create_attachment_prompt
from notechat_core.providers.base import ChatClient

SettingsCallback = Callable[[Any], Awaitable[None]]


@dataclass
class AssistantConfig:
    max_context_messages: int = 20
    attachment_char_limit: int = 8000


class NoteAssistant:
    def __init__(
        self,
        client: ChatClient,
        store: ConversationStore,
        settings,
        on_settings_changed: Optional[SettingsCallback] = None,
    ):
        self._client = client
        self._store = store
        self._on_settings_changed = on_settings_changed
        self._settings = settings
        self._config = self._config_from(settings)

    @property
    def settings(self):
        return self._settings

    @property
    def client(self) -> ChatClient:
        return self._client

    @property
    def store(self) -> ConversationStore:
        return self._store

    def update_settings(self, settings) -> None:
        """整体替换配置并同步给客户端。"""
        self._settings = settings
        self._config = self._config_from(settings)
        self._client.update_settings(settings)

    async def send(
        self,
        note_id: str,
        user_input: str,
        *,
        attachments: Iterable[AttachmentText] = (),
        document_text: Optional[str] = None,
        model: Optional[str] = None,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> Optional[ChatMessage]:
        """发送一条用户消息并把回复写回会话。

        Returns:
            assistant 消息；输入为空或用户中止时返回 None。

        Raises:
            ConfigurationError: 无可用模型。
            ProviderError / TransportError: 原样抛给 UI 展示。
        """
        text = (user_input or "").strip()
        attachments = list(attachments)
        if not text and not attachments:
            return None

        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "note_id": note_id}
        start_time = time.time()

        prompt = text
        if attachments:
            prompt = create_attachment_prompt(attachments, self._config.attachment_char_limit) + "\n\n" + text

        await self._store.add_message(note_id, ChatMessage(role="user", content=prompt))

        history = self._store.get_conversation_context(note_id, self._config.max_context_messages)
        messages: List[ChatMessage] = []
        context = build_document_context(document_text)
        if context is not None:
            messages.append(context)
        messages.extend(history)

        req = ChatRequest(
            model=await self._pick_model(model),
            messages=messages,
            stream=bool(getattr(self._settings, "streaming_enabled", True)),
            temperature=getattr(self._settings, "temperature", None),
            max_tokens=getattr(self._settings, "max_tokens", None),
        )
        self._log(logging.INFO, "Sending note chat", log_ctx, model=req.model, messages=len(messages))

        try:
            reply = await self._client.chat(req, on_token)
        except CancellationFault:
            self._log(logging.INFO, "Note chat stopped by user", log_ctx)
            return None

        await self._store.add_message(note_id, reply)
        self._log(
            logging.INFO,
            "Completed note chat",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            chars=len(reply.content),
        )
        return reply

    async def run_quick_action(
        self,
        prompt: str,
        text: str,
        *,
        model: Optional[str] = None,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> Optional[ChatMessage]:
        """对选中文本执行一次快捷操作，不写入会话历史。"""
        req = ChatRequest(
            model=await self._pick_model(model),
            messages=[ChatMessage(role="user", content=apply_quick_action(prompt, text))],
            stream=on_token is not None and bool(getattr(self._settings, "streaming_enabled", True)),
            temperature=getattr(self._settings, "temperature", None),
            max_tokens=getattr(self._settings, "max_tokens", None),
        )
        try:
            return await self._client.chat(req, on_token)
        except CancellationFault:
            return None

    def stop(self) -> None:
        self._client.abort()

    async def ensure_default_model(self) -> str:
        """未配置默认模型时，取模型列表中的第一个并保存。"""
        current = self._client.get_current_model()
        if current:
            return current
        models = await self._client.fetch_models()
        if not models:
            logger.warning("No models available to pick a default from")
            return ""
        updated = self._settings.model_copy(update={"model": models[0].name})
        self.update_settings(updated)
        if self._on_settings_changed is not None:
            await self._on_settings_changed(updated)
        return models[0].name

    async def _pick_model(self, explicit: Optional[str]) -> str:
        # 显式指定 > 配置中的默认模型 > 模型列表第一个
        if explicit:
            return explicit
        current = self._client.get_current_model()
        if current:
            return current
        models = await self._client.fetch_models()
        if models:
            return models[0].name
        raise ConfigurationError(code="MISSING_MODEL", message="No model configured and none available")

    @staticmethod
    def _config_from(settings) -> AssistantConfig:
        return AssistantConfig(
            max_context_messages=getattr(settings, "max_context_messages", 20),
            attachment_char_limit=getattr(settings, "attachment_char_limit", 8000),
        )

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
