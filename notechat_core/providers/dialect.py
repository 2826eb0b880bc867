"""Provider 方言适配函数。

两种方言：

- LOCAL: 本地推理服务（Ollama），/api/chat + /api/tags，流式响应为 NDJSON。
- OPENAI_COMPATIBLE: OpenAI 及兼容服务，/chat/completions + /models，
  流式响应为 SSE（data: {...}，以 data: [DONE] 结束）。

本模块全部是纯函数，方言作为参数传入，不持有任何状态；
“厂商 JSON ⇄ 项目内部统一模型”的转换都集中在这里。
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from notechat_core.domain.exceptions import ResponseDecodeError
from notechat_core.domain.models import ChatMessage, ChatRequest, ModelDescriptor


class Dialect(str, Enum):
    LOCAL = "local"
    OPENAI_COMPATIBLE = "openai-compatible"


# 回环地址或 Ollama 默认端口 → 本地方言
LOCAL_ENDPOINT_MARKERS = ("localhost", "127.0.0.1", "[::1]", "11434")

# /v1、/v4、/v1beta 等版本段
_VERSION_SEGMENT_RE = re.compile(r"/v\d+[a-z0-9]*(?=/|$)", re.IGNORECASE)


def detect_dialect(endpoint: str) -> Dialect:
    """按 URL 子串判断方言。"""

    url = (endpoint or "").lower()
    if any(marker in url for marker in LOCAL_ENDPOINT_MARKERS):
        return Dialect.LOCAL
    return Dialect.OPENAI_COMPATIBLE


def resolve_endpoint(url: str, dialect: Optional[Dialect] = None) -> str:
    """规范化 API 根地址：去掉首尾空白和末尾斜杠，兼容方言补上 /v1。

    幂等：resolve_endpoint(resolve_endpoint(u)) == resolve_endpoint(u)。
    """

    dialect = dialect or detect_dialect(url)
    base = (url or "").strip().rstrip("/")
    if dialect is Dialect.LOCAL:
        return base
    if _VERSION_SEGMENT_RE.search(base):
        return base
    return f"{base}/v1"


def chat_endpoint(url: str, dialect: Dialect) -> str:
    root = resolve_endpoint(url, dialect)
    if dialect is Dialect.LOCAL:
        return f"{root}/api/chat"
    return f"{root}/chat/completions"


def models_endpoint(url: str, dialect: Dialect) -> str:
    root = resolve_endpoint(url, dialect)
    if dialect is Dialect.LOCAL:
        return f"{root}/api/tags"
    return f"{root}/models"


def build_headers(api_key: str = "", extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if extra:
        headers.update(extra)
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def build_payload(req: ChatRequest, dialect: Dialect) -> Dict[str, Any]:
    """将 ChatRequest 转成对应方言的请求 JSON，未设置的采样参数不写入。"""

    payload: Dict[str, Any] = {
        "model": req.model,
        "messages": [m.to_payload() for m in req.messages],
        "stream": req.stream,
    }
    if dialect is Dialect.LOCAL:
        options: Dict[str, Any] = {}
        if req.temperature is not None:
            options["temperature"] = req.temperature
        if req.max_tokens is not None:
            options["num_predict"] = req.max_tokens
        payload["options"] = options
    else:
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.max_tokens is not None:
            payload["max_tokens"] = req.max_tokens
    return payload


def parse_completion(data: Any, dialect: Dialect) -> ChatMessage:
    """解析非流式响应，返回 assistant 消息。"""

    try:
        if dialect is Dialect.LOCAL:
            msg = data["message"]
        else:
            msg = data["choices"][0]["message"]
        content = msg["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ResponseDecodeError(
            code="DECODE_ERROR",
            message=f"Malformed {dialect.value} response: missing {exc}",
            http_status=502,
        )
    if content is None:
        content = ""
    if not isinstance(content, str):
        raise ResponseDecodeError(
            code="DECODE_ERROR",
            message=f"Malformed {dialect.value} response: content is {type(content).__name__}",
            http_status=502,
        )
    return ChatMessage(role="assistant", content=content)


def parse_models(data: Any, dialect: Dialect) -> List[ModelDescriptor]:
    """解析模型列表响应；同名模型只保留第一次出现的那一项。"""

    if not isinstance(data, dict):
        return []
    items: List[ModelDescriptor] = []
    if dialect is Dialect.LOCAL:
        for m in data.get("models") or []:
            if not isinstance(m, dict) or not m.get("name"):
                continue
            items.append(
                ModelDescriptor(
                    name=m["name"],
                    modified_at=m.get("modified_at"),
                    size_bytes=m.get("size"),
                )
            )
    else:
        for m in data.get("data") or []:
            if not isinstance(m, dict) or not m.get("id"):
                continue
            items.append(
                ModelDescriptor(
                    name=m["id"],
                    modified_at=_epoch_to_iso(m.get("created")),
                    size_bytes=0,
                )
            )

    seen: set[str] = set()
    unique: List[ModelDescriptor] = []
    for item in items:
        if item.name in seen:
            continue
        seen.add(item.name)
        unique.append(item)
    return unique


def extract_delta(event: Any, dialect: Dialect) -> str:
    """从一条流式事件 JSON 中取出文本增量，取不到时返回空串。"""

    if not isinstance(event, dict):
        return ""
    if dialect is Dialect.LOCAL:
        msg = event.get("message") or {}
        content = msg.get("content") if isinstance(msg, dict) else None
    else:
        choices = event.get("choices") or []
        first = choices[0] if choices and isinstance(choices[0], dict) else {}
        delta = first.get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
    return content if isinstance(content, str) else ""


def extract_error_message(data: Any) -> Optional[str]:
    """从错误响应体中提取可读的错误信息。

    OpenAI 风格为 {"error": {"message": ...}}，Ollama 为 {"error": "..."}。
    """

    if not isinstance(data, dict):
        return None
    err = data.get("error")
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    if isinstance(err, str) and err:
        return err
    if data.get("message"):
        return str(data["message"])
    return None


def _epoch_to_iso(created: Any) -> str:
    if not isinstance(created, (int, float)) or isinstance(created, bool) or not created:
        return ""
    dt = datetime.fromtimestamp(created, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")
