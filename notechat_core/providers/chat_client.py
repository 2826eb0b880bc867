"""流式聊天客户端。

本模块负责：

1. 持有 endpoint / api_key / 默认模型等配置，并据此确定方言（每次 update_settings 计算一次）。
2. 把统一的 ChatRequest 交给 dialect 模块转换成具体请求，发起 HTTP 调用。
3. 流式调用时把响应字节块喂给 StreamDecoder，按顺序回调每个文本增量，
   结束时返回拼接好的完整 assistant 消息。
4. 管理取消：每次调用新建一个取消句柄，调用结束（成功/失败/中止）后清空。

同一个客户端实例同时只允许一个 chat 调用；需要并发时请使用多个实例。
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import httpx

from notechat_core.domain.exceptions import (
    CancellationFault,
    ConfigurationError,
    ProviderError,
    RateLimitError,
    ResponseDecodeError,
    TransportError,
)
from notechat_core.domain.models import ChatMessage, ChatRequest, ModelDescriptor
from notechat_core.infrastructure.logging.logger import logger
from notechat_core.providers.dialect import (
    Dialect,
    build_headers,
    build_payload,
    chat_endpoint,
    detect_dialect,
    extract_error_message,
    models_endpoint,
    parse_completion,
    parse_models,
)
from notechat_core.providers.registry import effective_endpoint, find_preset_for_endpoint
from notechat_core.providers.stream_decoder import StreamDecoder

TokenCallback = Callable[[str], None]


@dataclass
class _CancelHandle:
    """单次调用的取消句柄。"""

    task: Optional["asyncio.Task"]
    aborted: bool = False

    def abort(self) -> None:
        if self.aborted:
            return
        self.aborted = True
        # 在回调内部（同一个 task）中止时只打标记，读取下一块之前会检查；
        # 从其他 task 中止时直接取消正在等待网络的 task。
        if self.task is None or self.task.done():
            return
        if self.task is not asyncio.current_task():
            self.task.cancel()


class StreamingChatClient:
    """多方言流式聊天客户端。

    - chat: 发起一次对话（流式或非流式），返回 assistant 消息。
    - fetch_models: 尽力而为地列出模型，失败时返回空列表。
    - abort: 中止当前调用。
    """

    name = "notechat"

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport 仅用于测试注入（httpx.MockTransport）
        self._transport = transport
        self._handle: Optional[_CancelHandle] = None
        self.update_settings(settings)

    # ---- 配置 ----

    def update_settings(self, settings) -> None:
        """整体替换配置；已在进行中的调用继续使用它开始时的配置。"""

        self._settings = settings
        self._endpoint = effective_endpoint(settings)
        self._dialect = detect_dialect(self._endpoint)

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def in_flight(self) -> bool:
        return self._handle is not None

    def get_current_model(self) -> str:
        return getattr(self._settings, "model", "") or ""

    # ---- 模型列表 ----

    async def fetch_models(self) -> List[ModelDescriptor]:
        """列出可用模型。模型列表只是建议性的，任何失败都折叠为空列表。"""

        cfg, endpoint, dialect = self._settings, self._endpoint, self._dialect
        url = models_endpoint(endpoint, dialect)
        try:
            async with self._http_client(cfg) as client:
                resp = await client.get(url, headers=self._headers(cfg, endpoint))
            if resp.status_code >= 400:
                logger.warning(
                    "fetch_models.http_error",
                    extra={"extra": {"url": url, "status": resp.status_code}},
                )
                return []
            return parse_models(resp.json(), dialect)
        except Exception as exc:
            logger.warning(
                "fetch_models.failed",
                extra={"extra": {"url": url, "error": f"{type(exc).__name__}: {exc}"}},
            )
            return []

    # ---- 对话 ----

    async def chat(self, req: ChatRequest, on_token: Optional[TokenCallback] = None) -> ChatMessage:
        """执行一次对话调用。

        步骤：
        1. 校验请求（模型名、消息列表、采样参数）并检查单飞约束，失败时不发任何请求。
        2. 按方言构造 URL、请求头与请求体。
        3. 非流式：解析整个 JSON；流式：逐块解码并按顺序回调 on_token。

        Raises:
            ConfigurationError: 请求不合法，或该实例已有调用在进行中。
            ProviderError: HTTP 状态非 2xx，或响应无法解析。
            TransportError: 网络层失败。
            CancellationFault: 调用被 abort() 中止。
        """

        self._validate(req)
        if self._handle is not None:
            raise ConfigurationError(
                code="CALL_IN_FLIGHT",
                message="A chat call is already in flight on this client",
            )

        handle = _CancelHandle(task=asyncio.current_task())
        self._handle = handle
        cfg, endpoint, dialect = self._settings, self._endpoint, self._dialect
        url = chat_endpoint(endpoint, dialect)
        log_ctx = {
            "dialect": dialect.value,
            "url": url,
            "model": req.model,
            "stream": req.stream,
            "messages": len(req.messages),
        }
        start = time.monotonic()
        logger.info("chat.start", extra={"extra": log_ctx})
        try:
            message = await self._exchange(req, cfg, url, endpoint, dialect, handle, on_token)
        except asyncio.CancelledError:
            if not handle.aborted:
                raise
            # 由 abort() 引起的取消：撤销 task 的取消计数，转换为 CancellationFault
            if handle.task is not None:
                handle.task.uncancel()
            logger.info("chat.cancelled", extra={"extra": log_ctx})
            raise CancellationFault(url=url)
        except CancellationFault:
            logger.info("chat.cancelled", extra={"extra": log_ctx})
            raise
        except (ConfigurationError, ProviderError, TransportError) as exc:
            logger.warning(
                "chat.failed",
                extra={"extra": {**log_ctx, "code": exc.code, "error": exc.message}},
            )
            raise
        finally:
            if self._handle is handle:
                self._handle = None

        logger.info(
            "chat.done",
            extra={"extra": {
                **log_ctx,
                "elapsed_seconds": round(time.monotonic() - start, 2),
                "chars": len(message.content),
            }},
        )
        return message

    def abort(self) -> None:
        """中止当前调用；没有调用在进行时什么也不做。"""

        handle = self._handle
        if handle is not None:
            handle.abort()

    # ---- 辅助方法 ----

    async def _exchange(
        self,
        req: ChatRequest,
        cfg,
        url: str,
        endpoint: str,
        dialect: Dialect,
        handle: _CancelHandle,
        on_token: Optional[TokenCallback],
    ) -> ChatMessage:
        payload = build_payload(req, dialect)
        headers = self._prepare_request(cfg, url, endpoint)
        try:
            async with self._http_client(cfg) as client:
                if not req.stream:
                    resp = await client.post(url, json=payload, headers=headers)
                    self._raise_for_status(resp)
                    try:
                        data = resp.json()
                    except ValueError as exc:
                        raise ResponseDecodeError(
                            code="DECODE_ERROR",
                            message=f"Invalid JSON response: {exc}",
                            http_status=502,
                        )
                    return parse_completion(data, dialect)

                async with client.stream("POST", url, json=payload, headers=headers) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        self._raise_for_status(resp)
                    return await self._consume_stream(resp, dialect, handle, on_token)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接被拒绝、读取中断等
            raise TransportError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, http_status=503)

    async def _consume_stream(
        self,
        resp: httpx.Response,
        dialect: Dialect,
        handle: _CancelHandle,
        on_token: Optional[TokenCallback],
    ) -> ChatMessage:
        decoder = StreamDecoder(dialect)
        parts: List[str] = []

        def emit(events) -> None:
            for event in events:
                if handle.aborted:
                    raise CancellationFault()
                parts.append(event.text_delta)
                if on_token is not None:
                    on_token(event.text_delta)

        async for chunk in resp.aiter_bytes():
            if handle.aborted:
                raise CancellationFault()
            emit(decoder.feed(chunk))
            if handle.aborted:
                raise CancellationFault()
        emit(decoder.flush())
        if handle.aborted:
            raise CancellationFault()
        return ChatMessage(role="assistant", content="".join(parts))

    def _validate(self, req: ChatRequest) -> None:
        if not (req.model or "").strip():
            raise ConfigurationError(code="MISSING_MODEL", message="Model name is required")
        if not req.messages:
            raise ConfigurationError(code="EMPTY_MESSAGES", message="At least one message is required")
        if req.temperature is not None and not 0.0 <= req.temperature <= 1.0:
            raise ConfigurationError(
                code="INVALID_TEMPERATURE",
                message=f"temperature must be within [0, 1], got {req.temperature}",
            )
        if req.max_tokens is not None and req.max_tokens < 1:
            raise ConfigurationError(
                code="INVALID_MAX_TOKENS",
                message=f"max_tokens must be positive, got {req.max_tokens}",
            )

    def _prepare_request(self, cfg, url: str, endpoint: str) -> Dict[str, str]:
        """解析 URL 并生成请求头；endpoint 格式错误时在任何网络 I/O 之前抛出。"""

        try:
            httpx.URL(url)
            return self._headers(cfg, endpoint)
        except (ValueError, httpx.InvalidURL) as exc:
            raise ConfigurationError(
                code="INVALID_ENDPOINT",
                message=f"Invalid API endpoint {endpoint!r}: {exc}",
                endpoint=endpoint,
            )

    def _headers(self, cfg, endpoint: str) -> Dict[str, str]:
        extra: Dict[str, str] = {}
        preset = find_preset_for_endpoint(endpoint)
        if preset is not None:
            extra.update(preset.extra_headers)
        extra.update(getattr(cfg, "extra_headers", None) or {})
        return build_headers(getattr(cfg, "api_key", "") or "", extra)

    def _http_client(self, cfg) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=getattr(cfg, "http_timeout", None),
            trust_env=False,
            transport=self._transport,
        )

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        try:
            detail = extract_error_message(resp.json())
        except ValueError:
            detail = None
        message = detail or f"API error: {resp.status_code}"
        if resp.status_code == 429:
            # 限流错误交给上层做重试/退避
            raise RateLimitError(code="RATE_LIMIT", message=message, http_status=429)
        raise ProviderError(code="API_ERROR", message=message, http_status=resp.status_code)
