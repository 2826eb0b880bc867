"""流式响应解码。

响应体以任意边界的字节块到达：一行可能跨两个块，一个块也可能包含多行。
StreamDecoder 在块之间保留未完成的行（以及被截断的 UTF-8 多字节字符），
只处理以换行结束的完整行，流结束时再 flush 剩余片段。

每次调用 chat 都新建一个 StreamDecoder，状态不跨调用共享。
"""

import codecs
import json
from typing import Any, Dict, Iterator, List, Optional

from notechat_core.domain.exceptions import ProviderError
from notechat_core.domain.models import StreamEvent
from notechat_core.infrastructure.logging.logger import logger
from notechat_core.providers.dialect import Dialect, extract_delta, extract_error_message

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def decode_event_line(line: str) -> Optional[Dict[str, Any]]:
    """解码一行流式数据，返回 JSON 对象。

    - 空行、[DONE]、SSE 注释/其他字段行、非法 JSON 都返回 None（不中断流）。
    - 带 data: 前缀的行去掉前缀；不带前缀的行（本地方言的 NDJSON）直接按 JSON 解析。
    - 事件里带 error 字段时抛出 ProviderError。
    """

    text = line.strip()
    if not text:
        return None
    if text.startswith(DATA_PREFIX):
        text = text[len(DATA_PREFIX):].strip()
    if not text or text == DONE_SENTINEL:
        return None
    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("stream.decode_skip", extra={"extra": {"line": text[:200]}})
        return None
    if not isinstance(obj, dict):
        logger.debug("stream.decode_skip", extra={"extra": {"line": text[:200]}})
        return None
    if obj.get("error"):
        raise ProviderError(
            code="STREAM_ERROR",
            message=extract_error_message(obj) or "Stream error",
            http_status=502,
        )
    return obj


class StreamDecoder:
    """跨块的行累加器 + 单行事件解码。"""

    def __init__(self, dialect: Dialect):
        self._dialect = dialect
        self._pending = ""
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> str:
        """尚未遇到换行的残留片段。"""
        return self._pending

    def feed(self, chunk: bytes) -> Iterator[StreamEvent]:
        """喂入一个原始字节块，返回其中完整行解码出的增量（按到达顺序惰性产出）。

        缓冲区在调用时立即更新；行的解码在迭代时进行，
        这样 error 事件之前的增量仍会先交给调用方。
        """

        self._pending += self._text.decode(chunk)
        if "\n" not in self._pending:
            return iter(())
        *lines, self._pending = self._pending.split("\n")
        return self._decode_lines(lines)

    def flush(self) -> Iterator[StreamEvent]:
        """流结束：处理最后一段没有换行结尾的数据。"""

        tail = self._pending + self._text.decode(b"", final=True)
        self._pending = ""
        return self._decode_lines(tail.split("\n"))

    def _decode_lines(self, lines: List[str]) -> Iterator[StreamEvent]:
        for line in lines:
            obj = decode_event_line(line)
            if obj is None:
                continue
            delta = extract_delta(obj, self._dialect)
            if delta:
                yield StreamEvent(text_delta=delta)
