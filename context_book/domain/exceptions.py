"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

分析（analyze）路径上 ConfigError / NetworkError / ParseError 均为致命错误，
整次调用失败且不返回部分结果；对话流则把 NetworkError 转成一个终止 token。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "MISSING_API_KEY"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、body 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigError(BusinessError):
    """配置校验失败（例如所选 Provider 缺少 API Key），在任何网络调用之前抛出。"""


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(NetworkError):
    """第三方 API 返回非 2xx 时抛出，message 形如 "Provider Error (<status>): <body>"。"""


class RateLimitError(ApiError):
    """Provider 限流错误（HTTP 429），由上层决定是否重试。"""


class DeadlineExceeded(NetworkError):
    """单次请求超过配置的总时限。"""


class ParseError(BusinessError):
    """响应体不是合法 JSON，或解析后不是预期结构。"""


class NotArrayError(ParseError):
    """经过兜底解析链后仍未找到 JSON 数组：模型没有返回预期结构。"""


class StreamProtocolError(BusinessError):
    """SSE 帧无法解析。非致命：解码器记录后跳过该帧继续。"""


class RequestCancelled(BusinessError):
    """调用方通过取消信号中止了请求。"""


class ConversationBusyError(BusinessError):
    """同一会话已有一个 send 正在进行。"""


class StoreError(BusinessError):
    """文档存储读写失败。"""
