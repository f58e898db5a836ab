"""Custom exception classes for the AWS Service Broker."""

from typing import Optional, Dict, Any, List
from enum import Enum


ASYNC_REQUIRED_ERROR = "AsyncRequired"
ASYNC_REQUIRED_DESCRIPTION = (
    "This service plan requires client support for asynchronous service operations."
)


class ErrorCode(str, Enum):
    """Error codes for different types of failures."""

    # Protocol errors, rendered to the caller
    BAD_REQUEST = "BAD_REQUEST"
    CONFLICT = "CONFLICT"
    ASYNC_REQUIRED = "ASYNC_REQUIRED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Internal failures, translated by the broker before reaching the caller
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    STORAGE_OPERATION_FAILED = "STORAGE_OPERATION_FAILED"
    CREDENTIAL_RESOLUTION_FAILED = "CREDENTIAL_RESOLUTION_FAILED"
    OUTPUT_NOT_FOUND = "OUTPUT_NOT_FOUND"
    TEMPLATE_INVALID = "TEMPLATE_INVALID"


HTTP_STATUS_BY_CODE = {
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.CONFLICT: 409,
    ErrorCode.ASYNC_REQUIRED: 422,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.STORAGE_OPERATION_FAILED: 500,
    ErrorCode.CREDENTIAL_RESOLUTION_FAILED: 500,
    ErrorCode.OUTPUT_NOT_FOUND: 400,
    ErrorCode.TEMPLATE_INVALID: 500,
}


class BrokerError(Exception):
    """Base exception class for the AWS Service Broker."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error message
            error_code: Specific error code for the failure
            details: Additional context about the error, such as the offending identifier
            cause: The underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    @property
    def status_code(self) -> int:
        """HTTP status code of the protocol response for this error."""
        return HTTP_STATUS_BY_CODE.get(self.error_code, 500)

    @property
    def error(self) -> Optional[str]:
        """OSB machine-readable error string, if the protocol defines one."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to an OSB error body."""
        result: Dict[str, Any] = {'description': self.message}
        if self.error:
            result['error'] = self.error
        return result

    def __str__(self) -> str:
        return self.message


class BadRequestError(BrokerError):
    """Malformed request: unknown or missing parameter, unknown reference, unsupported scope."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, cause: Optional[Exception] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.BAD_REQUEST,
            details=details,
            cause=cause
        )


class ConflictError(BrokerError):
    """An instance or binding already exists with different attributes."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.CONFLICT,
            details=details
        )


class AsyncRequiredError(BrokerError):
    """The caller refused asynchronous semantics for an operation that requires them."""

    def __init__(self):
        super().__init__(
            message=ASYNC_REQUIRED_DESCRIPTION,
            error_code=ErrorCode.ASYNC_REQUIRED
        )

    @property
    def error(self) -> Optional[str]:
        return ASYNC_REQUIRED_ERROR


class InternalServerError(BrokerError):
    """Data store, cloud provider or credential resolution failure."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, cause: Optional[Exception] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.INTERNAL_ERROR,
            details=details,
            cause=cause
        )


class ConfigurationError(BrokerError):
    """Exception for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        details = {}
        if config_key:
            details['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            details=details
        )


class StorageError(BrokerError):
    """Exception for data store failures."""

    def __init__(self, message: str, operation: Optional[str] = None, cause: Optional[Exception] = None):
        details = {}
        if operation:
            details['operation'] = operation

        super().__init__(
            message=message,
            error_code=ErrorCode.STORAGE_OPERATION_FAILED,
            details=details,
            cause=cause
        )


class CredentialResolutionError(BrokerError):
    """One or more secret-store references could not be resolved."""

    def __init__(self, invalid_parameters: List[str]):
        self.invalid_parameters = list(invalid_parameters)
        super().__init__(
            message=f"invalid parameters: [{' '.join(self.invalid_parameters)}]",
            error_code=ErrorCode.CREDENTIAL_RESOLUTION_FAILED,
            details={'invalid_parameters': self.invalid_parameters}
        )


class OutputNotFoundError(BrokerError):
    """A stack does not expose the output a binding scope needs."""

    def __init__(self, output_key: str):
        self.output_key = output_key
        super().__init__(
            message=f"output not found: {output_key}",
            error_code=ErrorCode.OUTPUT_NOT_FOUND,
            details={'output_key': output_key}
        )


class TemplateError(BrokerError):
    """A CloudFormation template lacks the broker specification metadata."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        details = {}
        if template_name:
            details['template_name'] = template_name

        super().__init__(
            message=message,
            error_code=ErrorCode.TEMPLATE_INVALID,
            details=details
        )


def format_error_response(error: Exception) -> Dict[str, Any]:
    """Format an exception into an OSB error body without leaking internals."""
    if isinstance(error, BrokerError):
        return error.to_dict()
    return {'description': 'Internal server error'}
