"""Core package: domain model, error taxonomy and naming helpers."""

from devenv.core.models import (
    EnvironmentRecord,
    ErrorDetail,
    ExecResult,
    OutputChunk,
    StatusChange,
)
from devenv.core.exceptions import (
    DevEnvError,
    NotFoundError,
    AlreadyExistsError,
    ConflictError,
    InvalidTransitionError,
    AdapterUnavailableError,
    AdapterError,
    OperationTimeoutError,
    InternalError,
    ValidationError,
)
from devenv.core.naming import (
    validate_environment_name,
    validate_branch_name,
    derive_container_name,
    derive_image_tag,
    compact_timestamp,
)

__all__ = [
    "EnvironmentRecord",
    "ErrorDetail",
    "ExecResult",
    "OutputChunk",
    "StatusChange",
    "DevEnvError",
    "NotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "InvalidTransitionError",
    "AdapterUnavailableError",
    "AdapterError",
    "OperationTimeoutError",
    "InternalError",
    "ValidationError",
    "validate_environment_name",
    "validate_branch_name",
    "derive_container_name",
    "derive_image_tag",
    "compact_timestamp",
]
