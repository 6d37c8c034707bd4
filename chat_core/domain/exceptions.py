"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或流式传输层做统一捕获与用户提示。

分类：
- AdmissionError: 请求准入失败（模型不在白名单、消息过长、链路定义非法、限流），
  必须在任何流事件发出之前同步抛出。
- ProviderError: 底层模型调用失败（网络、限流、超时、服务端错误），
  流式路径转换为 error 事件，链式路径转换为步骤错误。
- TransportError: 连接或帧层面的问题。
- StateError: 针对已不存在的会话进行操作，只在存储内部使用，永远不向调用方抛出。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "RATE_LIMITED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、step 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class AdmissionError(BusinessError):
    """请求在进入流式传输或链式处理之前被拒绝。"""


class ProviderError(BusinessError):
    """Provider 调用失败的基类。"""


class NetworkError(ProviderError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(ProviderError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(ProviderError):
    """Provider 限流错误，由上层负责重试/退避策略。"""


class TransportError(BusinessError):
    """流式连接异常：响应不是事件流、连接中途断开等。"""


class StateError(BusinessError):
    """会话已不存在。由 SessionStore 内部吸收，不会抛给调用方。"""
