"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

分类：
- ValidationError / InvalidRetryTarget: 同步拒绝，会话记录保持不变。
- AuthRequired / MissingApiKey: 在发起任何网络请求之前拒绝。
- GenerationBusyError: 会话中已有进行中的生成。
- TransportError 及其子类: 生成级失败，占位助手消息会被移除并上抛给调用方。
- ProtocolError: 单行记录格式错误，由解码器记录日志后吞掉，不会终止流。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STREAM_INTERRUPTED"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 generation_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class InvalidRetryTarget(ValidationError):
    """重试目标之前没有可用的用户消息。"""


class GenerationBusyError(BusinessError):
    """会话内已存在进行中的生成，同一时刻最多只允许一个。"""


class AuthRequired(BusinessError):
    """缺少 Bearer 凭证，无法向后端发起请求。"""


class MissingApiKey(BusinessError):
    """所选 provider/model 没有可用的 API Key。"""


class TransportError(BusinessError):
    """生成级传输失败的基类。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时、读取中断等。"""


class ApiError(TransportError):
    """后端返回非 2xx 状态码时抛出。"""


class RateLimitError(ApiError):
    """后端限流 (429)，是否重试由上层决定。"""


class StreamInterruptedError(TransportError):
    """流在没有 done/error 记录的情况下结束（连接中途断开）。"""


class ServerSignaledError(TransportError):
    """后端在流中通过 error 字段报告的错误，处理方式与 TransportError 相同。"""


class GenerationCancelled(BusinessError):
    """生成被用户取消；只有等待生成结果的调用方会收到。"""


class ProtocolError(BusinessError):
    """单条 data 记录无法解析。"""
