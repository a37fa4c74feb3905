from wsapi.core.types._common_types import (
    TERMINAL_PHASES,
    ConnectionPhase,
    EndpointKind,
    Market,
    Params,
    RequestId,
    SessionPhase,
    StreamHandler,
    WsKey,
    connection_phase_format,
)
from wsapi.core.types._exception_types import (
    AsyncWrappedCallable,
    ErrorCategory,
    ErrorCode,
    ErrorDomain,
    ErrorSeverity,
    ExceptionGroup,
    RuleKind,
    SyncOrAsyncCallable,
)

__all__ = [
    # _common_types
    "WsKey",
    "Market",
    "EndpointKind",
    "RequestId",
    "Params",
    "StreamHandler",
    "ConnectionPhase",
    "SessionPhase",
    "TERMINAL_PHASES",
    "connection_phase_format",
    # _exception_types
    "ErrorDomain",
    "ErrorCode",
    "ErrorSeverity",
    "ErrorCategory",
    "ExceptionGroup",
    "RuleKind",
    "SyncOrAsyncCallable",
    "AsyncWrappedCallable",
]
