"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 UI 外壳或会话协调层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STREAM_DECODE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 session_id、event 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class DecodeError(BusinessError):
    """单个流式帧无法解析。解码器会记录告警并跳过，不会中断流。"""


class TransportError(BusinessError):
    """传输层失败：网络异常或非 2xx 状态码，只中止当前这一轮对话。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时、读流中断等。"""


class ApiError(TransportError):
    """远端 API 返回非 2xx 错误时抛出。"""


class RateLimitError(ApiError):
    """远端限流（429）。不做自动重试，由用户重新发送。"""


class RemoteError(BusinessError):
    """流中出现 event=error 的事件，处理方式与 TransportError 一致。"""


class ConflictError(BusinessError):
    """同一会话已有进行中的对话轮次时再次发起，直接拒绝且不修改状态。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""
