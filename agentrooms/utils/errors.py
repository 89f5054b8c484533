"""Error handling utilities for the multi-agent chat room engine."""

from dataclasses import dataclass
from typing import Optional, Dict, Any
from enum import Enum


class ErrorType(Enum):
    """Enumeration of error types in the chat room engine."""

    # Lifecycle Errors
    INVALID_STATE = "INVALID_STATE"
    NO_AGENT_SELECTED = "NO_AGENT_SELECTED"

    # Completion Backend Errors
    UPSTREAM_COMPLETION_FAILURE = "UPSTREAM_COMPLETION_FAILURE"
    UPSTREAM_RATE_LIMIT = "UPSTREAM_RATE_LIMIT"
    UPSTREAM_TIMEOUT = "UPSTREAM_TIMEOUT"
    UPSTREAM_AUTH_ERROR = "UPSTREAM_AUTH_ERROR"
    UPSTREAM_INVALID_REQUEST = "UPSTREAM_INVALID_REQUEST"

    # Configuration Errors
    CONFIG_INVALID = "CONFIG_INVALID"

    # General Errors
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class ErrorContext:
    """
    Context information for errors raised by the chat room engine.

    Attributes:
        error_type: Type of error from ErrorType enum
        message: Human-readable error message
        recoverable: Whether the session can continue after the error
        fallback_action: Optional description of what the caller can do next
        details: Optional additional error details
        original_exception: Optional original exception that caused this error
    """

    error_type: ErrorType
    message: str
    recoverable: bool
    fallback_action: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    original_exception: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error context to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error context
        """
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "recoverable": self.recoverable,
            "fallback_action": self.fallback_action,
            "details": self.details or {},
            "original_exception": str(self.original_exception) if self.original_exception else None
        }


class ChatRoomError(Exception):
    """
    Base exception for all chat room errors.

    Wraps errors with additional context so the transport layer can turn
    them into a single error reply for the client.

    Attributes:
        context: ErrorContext with detailed error information
    """

    def __init__(self, context: ErrorContext):
        self.context = context
        super().__init__(context.message)

    def __str__(self) -> str:
        """String representation of the error."""
        base = f"{self.context.error_type.value}: {self.context.message}"
        if self.context.fallback_action:
            base += f" (Fallback: {self.context.fallback_action})"
        return base

    @property
    def message(self) -> str:
        return self.context.message

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for logging/serialization.

        Returns:
            Dictionary representation of error
        """
        return self.context.to_dict()


class InvalidStateError(ChatRoomError):
    """Operation attempted before the required initialization."""

    @classmethod
    def roster_not_initialized(cls, operation: str) -> "InvalidStateError":
        """
        Create error for an operation that needs an agent roster.

        Args:
            operation: Name of the operation that was attempted

        Returns:
            InvalidStateError instance
        """
        context = ErrorContext(
            error_type=ErrorType.INVALID_STATE,
            message=f"Cannot {operation}: no agents have been loaded. Please configure them first.",
            recoverable=False,
            details={"operation": operation}
        )
        return cls(context)

    @classmethod
    def empty_roster(cls) -> "InvalidStateError":
        """Create error for an attempt to initialize an empty roster."""
        context = ErrorContext(
            error_type=ErrorType.INVALID_STATE,
            message="No agents have been loaded. At least one agent is required.",
            recoverable=False
        )
        return cls(context)

    @classmethod
    def roster_already_initialized(cls) -> "InvalidStateError":
        """Create error for a second roster initialization."""
        context = ErrorContext(
            error_type=ErrorType.INVALID_STATE,
            message="The agent roster has already been initialized.",
            recoverable=False
        )
        return cls(context)

    @classmethod
    def duplicate_agent(cls, agent_name: str) -> "InvalidStateError":
        """
        Create error for two agents sharing a name.

        Args:
            agent_name: Name that appears more than once (case-insensitive)

        Returns:
            InvalidStateError instance
        """
        context = ErrorContext(
            error_type=ErrorType.INVALID_STATE,
            message=f"Agent name '{agent_name}' is defined more than once.",
            recoverable=False,
            details={"agent_name": agent_name}
        )
        return cls(context)


class NoAgentSelectedError(ChatRoomError):
    """Selection strategy produced no usable speaker."""

    @classmethod
    def for_strategy(cls, strategy_name: str) -> "NoAgentSelectedError":
        """
        Create error for a selection strategy that ended without an agent.

        Args:
            strategy_name: Class name of the selection strategy

        Returns:
            NoAgentSelectedError instance
        """
        context = ErrorContext(
            error_type=ErrorType.NO_AGENT_SELECTED,
            message="No agent selected.",
            recoverable=True,
            fallback_action="Send a new message to start another turn",
            details={"strategy": strategy_name}
        )
        return cls(context)


class UpstreamCompletionError(ChatRoomError):
    """Exception for failures of the streaming completion backend."""

    @classmethod
    def from_client_error(
        cls,
        error: Exception,
        operation: str,
        fallback_action: Optional[str] = None
    ) -> "UpstreamCompletionError":
        """
        Create UpstreamCompletionError from a botocore ClientError.

        Args:
            error: Original botocore ClientError
            operation: Description of operation that failed
            fallback_action: Optional fallback action description

        Returns:
            UpstreamCompletionError instance
        """
        error_code = "Unknown"
        error_message = str(error)

        if hasattr(error, 'response'):
            error_info = error.response.get("Error", {})
            error_code = error_info.get("Code", "Unknown")
            error_message = error_info.get("Message", str(error))

        error_type_map = {
            "ThrottlingException": ErrorType.UPSTREAM_RATE_LIMIT,
            "TooManyRequestsException": ErrorType.UPSTREAM_RATE_LIMIT,
            "RequestTimeout": ErrorType.UPSTREAM_TIMEOUT,
            "RequestTimeoutException": ErrorType.UPSTREAM_TIMEOUT,
            "ModelTimeoutException": ErrorType.UPSTREAM_TIMEOUT,
            "UnauthorizedException": ErrorType.UPSTREAM_AUTH_ERROR,
            "AccessDeniedException": ErrorType.UPSTREAM_AUTH_ERROR,
            "ValidationException": ErrorType.UPSTREAM_INVALID_REQUEST,
        }

        error_type = error_type_map.get(error_code, ErrorType.UPSTREAM_COMPLETION_FAILURE)

        context = ErrorContext(
            error_type=error_type,
            message=f"Completion backend error during {operation}: {error_message}",
            recoverable=True,
            fallback_action=fallback_action or "Send a new message to retry",
            details={
                "error_code": error_code,
                "operation": operation
            },
            original_exception=error
        )

        return cls(context)

    @classmethod
    def from_exception(cls, error: Exception, operation: str) -> "UpstreamCompletionError":
        """
        Wrap an arbitrary backend exception.

        Args:
            error: Original exception raised by the backend client
            operation: Description of operation that failed

        Returns:
            UpstreamCompletionError instance
        """
        context = ErrorContext(
            error_type=ErrorType.UPSTREAM_COMPLETION_FAILURE,
            message=f"Completion backend error during {operation}: {str(error)}",
            recoverable=True,
            fallback_action="Send a new message to retry",
            details={"operation": operation},
            original_exception=error
        )
        return cls(context)


class ConfigurationError(ChatRoomError):
    """Exception for missing or invalid configuration and room files."""

    @classmethod
    def invalid(cls, source: str, reason: str) -> "ConfigurationError":
        """
        Create error for an unusable configuration source.

        Args:
            source: File path or setting name
            reason: What is wrong with it

        Returns:
            ConfigurationError instance
        """
        context = ErrorContext(
            error_type=ErrorType.CONFIG_INVALID,
            message=f"Invalid configuration in '{source}': {reason}",
            recoverable=False,
            details={"source": source}
        )
        return cls(context)


def handle_completion_error(
    error: Exception,
    operation: str,
    logger,
) -> None:
    """
    Log a completion backend failure and raise it as UpstreamCompletionError.

    Errors that are already UpstreamCompletionError are re-raised unchanged.

    Args:
        error: Original exception from the completion backend
        operation: Description of operation that failed
        logger: Logger instance for error logging

    Raises:
        UpstreamCompletionError: Wrapped error with context
    """
    if isinstance(error, UpstreamCompletionError):
        raise error

    if hasattr(error, 'response'):
        upstream_error = UpstreamCompletionError.from_client_error(error=error, operation=operation)
    else:
        upstream_error = UpstreamCompletionError.from_exception(error=error, operation=operation)

    logger.error(f"Completion backend error: {upstream_error}")
    raise upstream_error from error
