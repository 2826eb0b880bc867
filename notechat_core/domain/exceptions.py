"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 UI 层做统一捕获与用户提示。

UI 层约定：
- ProviderError / TransportError：把 message 原样展示在交互位置附近。
- CancellationFault：用户主动中止，不展示任何内容。
"""

import asyncio


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "EMPTY_MESSAGES"）。
        message: 用户可读错误信息。
        http_status: 对应的 HTTP 状态码，默认 400。
        extra: 其他补充字段（例如 endpoint、dialect 等）。
    """

    is_cancellation = False

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigurationError(BusinessError):
    """调用方契约错误：模型名为空、消息列表为空、参数越界或已有调用在进行中。

    一定在任何网络 I/O 之前抛出。
    """


class ProviderError(BusinessError):
    """Provider 返回了非 2xx 状态码，或返回体无法解析。不会自动重试。"""


class RateLimitError(ProviderError):
    """Provider 限流错误（HTTP 429），由上层负责重试/退避策略。"""


class ResponseDecodeError(ProviderError):
    """非流式响应缺少必要字段或不是合法 JSON。"""


class TransportError(BusinessError):
    """网络层错误，例如 DNS 失败、连接被拒绝、响应体读取中断等。"""


class CancellationFault(BusinessError):
    """调用被 abort() 主动中止。与 TransportError 互不继承，便于区分。"""

    is_cancellation = True

    def __init__(self, message: str = "Request aborted", **extra):
        super().__init__(code="CANCELLED", message=message, http_status=499, **extra)


def is_cancellation(exc: BaseException) -> bool:
    """判断异常是否代表一次取消，而不是需要展示给用户的失败。"""

    if isinstance(exc, asyncio.CancelledError):
        return True
    return bool(getattr(exc, "is_cancellation", False))
