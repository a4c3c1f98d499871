#!/usr/bin/env -S python3 -B -u
"""
Structured Exception Hierarchy for the Namespace Harness

This module provides the exception hierarchy used by every harness component,
with readable error messages and suggested actions for resolution.

Key Features:
- Structured exceptions for infrastructure, execution, assertion and
  scenario failures
- Suggested actions for error resolution
- Debug information available only in verbose mode
- Exit codes for command-line entry points
"""

import sys
import traceback
from typing import Optional, Dict, Any, List
from enum import IntEnum


class ErrorCode(IntEnum):
    """Standard exit codes for the harness."""
    SUCCESS = 0
    ASSERTION_FAILED = 1
    INVALID_INPUT = 10
    CONFIGURATION_ERROR = 11
    NAMESPACE_ERROR = 12
    EXECUTION_ERROR = 13
    TIMEOUT = 14
    INTERNAL_ERROR = 15


class HarnessError(Exception):
    """
    Base exception class for all harness errors.

    Provides structured error information with readable messages
    and suggested actions for resolution.
    """

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize harness error with structured information.

        Args:
            message: Readable error message
            suggestion: Suggested action to resolve the error
            error_code: Exit code for the error
            details: Additional error details (shown only in verbose mode)
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause

    def format_error(self, verbose_level: int = 0) -> str:
        """
        Format error message based on verbosity level.

        Args:
            verbose_level: 0=basic, 1=verbose, 2=debug, 3=full details

        Returns:
            Formatted error message
        """
        lines = [f"Error: {self.message}"]

        if self.suggestion:
            lines.append(f"Suggestion: {self.suggestion}")

        if verbose_level >= 1 and self.details:
            lines.append("\nDetails:")
            for key, value in self.details.items():
                lines.append(f"  {key}: {value}")

        if verbose_level >= 2 and self.cause:
            lines.append(f"\nCaused by: {type(self.cause).__name__}: {str(self.cause)}")

        if verbose_level >= 3:
            lines.append("\nStack trace:")
            tb = traceback.format_exc()
            if tb and tb != 'NoneType: None\n':
                lines.append(tb)
            elif self.__traceback__ is not None:
                lines.append(''.join(traceback.format_tb(self.__traceback__)))
            else:
                lines.append("(No active exception - stack trace not available)")

        return "\n".join(lines)


# Configuration and Input Errors

class ConfigurationError(HarnessError):
    """Raised when there are configuration-related issues."""

    def __init__(self, message: str, config_file: Optional[str] = None, **kwargs):
        suggestion = "Check your configuration file format and values."
        if config_file:
            suggestion += f" Configuration file: {config_file}"
            kwargs['details'] = kwargs.get('details', {})
            kwargs['details']['config_file'] = config_file
        super().__init__(
            message=message,
            suggestion=suggestion,
            error_code=ErrorCode.CONFIGURATION_ERROR,
            **kwargs
        )


class ValidationError(HarnessError):
    """Base class for input validation errors."""

    def __init__(self, field: str, value: Any, requirement: str, **kwargs):
        super().__init__(
            message=f"Invalid {field}: {value}",
            suggestion=f"The {field} must {requirement}",
            error_code=ErrorCode.INVALID_INPUT,
            details={"field": field, "value": value, "requirement": requirement},
            **kwargs
        )


class ScenarioArgumentError(ValidationError):
    """Raised when a key=value scenario argument cannot be parsed."""

    def __init__(self, argument: str, requirement: str, **kwargs):
        super().__init__(
            field="scenario argument",
            value=argument,
            requirement=requirement,
            **kwargs
        )


# Infrastructure Errors

class InfrastructureError(HarnessError):
    """Base class for namespace and process infrastructure failures."""

    def __init__(self, message: str, **kwargs):
        if 'error_code' not in kwargs:
            kwargs['error_code'] = ErrorCode.NAMESPACE_ERROR
        super().__init__(message=message, **kwargs)


class NamespaceCreationError(InfrastructureError):
    """Raised when an isolated network namespace cannot be reserved."""

    def __init__(self, name: str, reason: str, **kwargs):
        details = kwargs.pop('details', {})
        details.update({"namespace": name, "reason": reason})
        super().__init__(
            message=f"Failed to create network namespace '{name}': {reason}",
            suggestion=(
                "Namespace creation requires privileges. Check:\n"
                "  1. The harness runs as root (or with CAP_SYS_ADMIN)\n"
                "  2. unshare from util-linux is installed\n"
                "  3. The system is not out of namespaces or processes"
            ),
            details=details,
            **kwargs
        )


class StaleNamespaceError(InfrastructureError):
    """Raised when a namespace handle is used after it was destroyed."""

    def __init__(self, handle: Any, **kwargs):
        super().__init__(
            message=f"Namespace handle {handle} is not active",
            suggestion="Handles are only valid between create_namespace() and destroy_namespace().",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"handle": str(handle)},
            **kwargs
        )


class ProcessSpawnError(InfrastructureError):
    """Raised when a command cannot be started at all."""

    def __init__(self, command: str, reason: str, **kwargs):
        super().__init__(
            message=f"Failed to start command: {command}",
            suggestion=(
                "The command could not be executed. Check:\n"
                "  1. Required tools are installed (nsenter, unshare, nc, ss)\n"
                "  2. The tool-under-test path is correct\n"
                "  3. Sufficient permissions to run the command"
            ),
            error_code=ErrorCode.EXECUTION_ERROR,
            details={"command": command, "reason": reason},
            **kwargs
        )


# Execution Errors

class ExecutionError(HarnessError):
    """Base class for execution-related errors."""
    pass


class CommandTimeoutError(ExecutionError):
    """Raised when a bounded command exceeds its deadline."""

    def __init__(self, command: str, timeout: float, output: str = "", **kwargs):
        super().__init__(
            message=f"Command timed out after {timeout}s: {command}",
            suggestion=(
                "The command did not finish in time. This usually means:\n"
                "  1. A peer process never connected or never closed\n"
                "  2. The command waits on standard input\n"
                "  3. The timeout is too small for this host"
            ),
            error_code=ErrorCode.TIMEOUT,
            details={"command": command, "timeout": timeout, "output": output},
            **kwargs
        )
        self.command = command
        self.timeout = timeout
        self.output = output


class UnexpectedExitCodeError(ExecutionError):
    """Raised when a command exits with a code other than the expected one."""

    def __init__(self, command: str, exit_code: int, expected: int, output: str = "", **kwargs):
        super().__init__(
            message=f"exit code is {exit_code}; expected {expected}",
            suggestion="Inspect the captured command output in the transcript above.",
            error_code=ErrorCode.EXECUTION_ERROR,
            details={
                "command": command,
                "exit_code": exit_code,
                "expected": expected,
                "output": output
            },
            **kwargs
        )
        self.command = command
        self.exit_code = exit_code
        self.expected = expected
        self.output = output


class ListenerNotReadyError(ExecutionError):
    """Raised when a background listener never becomes ready."""

    def __init__(self, command: str, reason: str, output: str = "", **kwargs):
        super().__init__(
            message=f"Listener not ready: {reason}",
            suggestion=(
                "The listener did not bind its port. Check:\n"
                "  1. nc (ncat) supports the requested protocol\n"
                "  2. The sctp kernel module is loaded for sctp tests\n"
                "  3. The port is not already in use in the namespace"
            ),
            error_code=ErrorCode.EXECUTION_ERROR,
            details={"command": command, "reason": reason, "output": output},
            **kwargs
        )


# Assertion Errors

class AssertionMismatchError(HarnessError, AssertionError):
    """Raised when an actual value does not satisfy the expected comparison."""

    def __init__(self, description: str, operator: str, expected: str, actual: str,
                 diagnostic: str = "", **kwargs):
        super().__init__(
            message=f"{description}: expected {operator} '{expected}', got '{actual}'",
            error_code=ErrorCode.ASSERTION_FAILED,
            details={
                "description": description,
                "operator": operator,
                "expected": expected,
                "actual": actual
            },
            **kwargs
        )
        self.description = description
        self.operator = operator
        self.expected = expected
        self.actual = actual
        self.diagnostic = diagnostic

    def format_error(self, verbose_level: int = 0) -> str:
        if self.diagnostic:
            return self.diagnostic
        return super().format_error(verbose_level)


# Scenario Errors

class ScenarioError(HarnessError):
    """Base class for scenario lifecycle failures."""

    step = "scenario"

    def __init__(self, state: str, cause: Optional[Exception] = None, **kwargs):
        error_code = getattr(cause, 'error_code', ErrorCode.INTERNAL_ERROR)
        reason = getattr(cause, 'message', str(cause)) if cause else "unknown failure"
        super().__init__(
            message=f"Scenario {self.step} failed ({state}): {reason}",
            error_code=error_code,
            details={"state": state},
            cause=cause,
            **kwargs
        )
        self.state = state


class ScenarioSetupError(ScenarioError):
    """Raised when the tool-under-test setup step fails."""
    step = "setup"


class ScenarioVerifyError(ScenarioError):
    """Raised when a connectivity check fails."""
    step = "verify"


class ScenarioTeardownError(ScenarioError):
    """Raised when the tool-under-test teardown step fails."""
    step = "teardown"


class ScenarioStateError(HarnessError):
    """Raised when a lifecycle step is requested in the wrong state."""

    def __init__(self, step: str, state: str, allowed: List[str], **kwargs):
        super().__init__(
            message=f"Cannot {step} a scenario in state '{state}'",
            suggestion=f"{step} is only valid from: {', '.join(allowed)}",
            error_code=ErrorCode.INTERNAL_ERROR,
            details={"step": step, "state": state},
            **kwargs
        )


# Error Handler Utility

class ErrorHandler:
    """Utility class for consistent error handling across entry points."""

    @staticmethod
    def handle_error(error: Exception, verbose_level: int = 0) -> int:
        """
        Handle an error and return appropriate exit code.

        Args:
            error: The exception to handle
            verbose_level: Verbosity level (0-3)

        Returns:
            Exit code for the application
        """
        if isinstance(error, HarnessError):
            print(error.format_error(verbose_level), file=sys.stderr)
            return error.error_code
        else:
            print("Error: An unexpected error occurred", file=sys.stderr)
            print("Suggestion: This might be a bug. Please report it with the full error output.", file=sys.stderr)

            if verbose_level >= 1:
                print(f"\nError type: {type(error).__name__}", file=sys.stderr)
                print(f"Error message: {str(error)}", file=sys.stderr)

            if verbose_level >= 3:
                print("\nStack trace:", file=sys.stderr)
                traceback.print_exc(file=sys.stderr)

            return ErrorCode.INTERNAL_ERROR

    @staticmethod
    def wrap_main(main_func):
        """
        Decorator to wrap main functions with error handling.

        Usage:
            @ErrorHandler.wrap_main
            def main():
                # Your main function code
                pass
        """
        def wrapper(*args, **kwargs):
            try:
                return main_func(*args, **kwargs)
            except KeyboardInterrupt:
                print("\nOperation cancelled by user", file=sys.stderr)
                return ErrorCode.INTERNAL_ERROR
            except Exception as e:
                verbose_level = 0
                if args and hasattr(args[0], 'verbose_level'):
                    verbose_level = args[0].verbose_level
                elif 'verbose_level' in kwargs:
                    verbose_level = kwargs['verbose_level']
                else:
                    from .structured_logging import get_verbose_level
                    verbose_level = get_verbose_level()

                return ErrorHandler.handle_error(e, verbose_level)

        return wrapper
