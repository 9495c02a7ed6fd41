"""Core building blocks shared by the execution layer.

Modules:
    errors      Error hierarchy with retry semantics and context
    logging     structlog configuration and logger factory
    protocols   Clock, SleepFn and Transport structural types
    result      Ok / Err result envelope
    settings    RelaySettings (pydantic-settings) and get_settings()
"""

from .errors import (
    CancellationError,
    CircuitOpenError,
    ConfigError,
    DeadlineExceeded,
    ErrorCategory,
    ErrorContext,
    PermanentCallError,
    RateLimitExceeded,
    RelayError,
    RetryableCallError,
    TransientError,
)
from .result import Err, Ok, Result, partition_results

__all__ = [
    # Errors
    "CancellationError",
    "CircuitOpenError",
    "ConfigError",
    "DeadlineExceeded",
    "ErrorCategory",
    "ErrorContext",
    "PermanentCallError",
    "RateLimitExceeded",
    "RelayError",
    "RetryableCallError",
    "TransientError",
    # Result
    "Err",
    "Ok",
    "Result",
    "partition_results",
]
