#!/usr/bin/env -S python3 -B -u
"""
Comprehensive Test Suite for Error Handling

This module tests all error conditions and verifies that:
1. Errors are handled gracefully without stack traces (unless -vvv)
2. User-friendly messages are shown
3. Helpful suggestions are provided
4. Correct exit codes are returned
"""

import unittest
import sys
import os
from io import StringIO
from contextlib import redirect_stderr

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.core.exceptions import (
    HarnessError, ConfigurationError, ValidationError, ScenarioArgumentError,
    NamespaceCreationError, StaleNamespaceError, ProcessSpawnError,
    CommandTimeoutError, UnexpectedExitCodeError, ListenerNotReadyError,
    AssertionMismatchError, ScenarioSetupError, ScenarioVerifyError,
    ScenarioStateError, ErrorHandler, ErrorCode
)
from src.core.models import NamespaceHandle


class TestErrorMessages(unittest.TestCase):
    """Test error message formatting at different verbosity levels."""

    def test_basic_error_message(self):
        """Test basic error message without verbosity."""
        error = NamespaceCreationError("host", "operation not permitted")

        message = error.format_error(verbose_level=0)

        self.assertIn("Error: Failed to create network namespace 'host'", message)
        self.assertIn("Suggestion:", message)
        self.assertIn("root", message)

        # Should NOT contain technical details
        self.assertNotIn("Details:", message)
        self.assertNotIn("Stack trace:", message)

    def test_verbose_error_message(self):
        """Test error message with -v verbosity."""
        error = UnexpectedExitCodeError("netavark setup /proc/1/ns/net", 1, 0, "bad config")

        message = error.format_error(verbose_level=1)

        self.assertIn("Error: exit code is 1; expected 0", message)
        self.assertIn("Details:", message)
        self.assertIn("command: netavark setup /proc/1/ns/net", message)
        self.assertIn("output: bad config", message)

    def test_debug_error_message(self):
        """Test error message with -vv verbosity."""
        cause = FileNotFoundError("No such file or directory: 'nc'")
        error = ProcessSpawnError("nc -l -p 80", str(cause), cause=cause)

        message = error.format_error(verbose_level=2)

        self.assertIn("Caused by: FileNotFoundError", message)

    def test_trace_error_message(self):
        """Test error message with -vvv verbosity."""
        try:
            raise ValueError("Test error")
        except ValueError as e:
            error = ConfigurationError("Config failed", cause=e)

            message = error.format_error(verbose_level=3)

        self.assertIn("Stack trace:", message)
        self.assertIn("raise ValueError", message)


class TestExceptionTypes(unittest.TestCase):
    """Test specific exception types and their properties."""

    def test_error_codes(self):
        self.assertEqual(ConfigurationError("x").error_code, ErrorCode.CONFIGURATION_ERROR)
        self.assertEqual(ScenarioArgumentError("ip=7", "be 4").error_code, ErrorCode.INVALID_INPUT)
        self.assertEqual(NamespaceCreationError("host", "x").error_code, ErrorCode.NAMESPACE_ERROR)
        self.assertEqual(CommandTimeoutError("sleep", 1).error_code, ErrorCode.TIMEOUT)
        self.assertEqual(ListenerNotReadyError("nc", "x").error_code, ErrorCode.EXECUTION_ERROR)

    def test_scenario_argument_is_validation_error(self):
        error = ScenarioArgumentError("range=0", "be a positive integer range")
        self.assertIsInstance(error, ValidationError)
        self.assertIn("Invalid scenario argument: range=0", error.message)
        self.assertIn("positive integer", error.suggestion)

    def test_stale_handle(self):
        error = StaleNamespaceError(NamespaceHandle(pid=99, name="container"))
        self.assertIn("container(pid=99)", error.message)
        self.assertEqual(error.error_code, ErrorCode.INTERNAL_ERROR)

    def test_timeout_keeps_output(self):
        error = CommandTimeoutError("nc -l", 5, "partial")
        self.assertEqual(error.output, "partial")
        self.assertIn("timed out after 5s", error.message)

    def test_assertion_mismatch_is_assertion_error(self):
        error = AssertionMismatchError("d", "==", "a", "b")
        self.assertIsInstance(error, AssertionError)
        self.assertIsInstance(error, HarnessError)
        self.assertIn("Error: d: expected == 'a', got 'b'", error.format_error())

    def test_scenario_error_takes_cause_code(self):
        cause = UnexpectedExitCodeError("tool setup", 1, 0)
        error = ScenarioSetupError("setup_failed", cause=cause)
        self.assertEqual(error.error_code, ErrorCode.EXECUTION_ERROR)
        self.assertIn("Scenario setup failed (setup_failed): exit code is 1; expected 0",
                      error.message)
        self.assertIs(error.cause, cause)

    def test_scenario_verify_error_from_mismatch(self):
        cause = AssertionMismatchError("ncat received data", "==", "a", "")
        error = ScenarioVerifyError("verify_failed", cause=cause)
        self.assertEqual(error.error_code, ErrorCode.ASSERTION_FAILED)

    def test_state_error(self):
        error = ScenarioStateError("verify", "built", ["applied"])
        self.assertIn("Cannot verify a scenario in state 'built'", error.message)
        self.assertIn("applied", error.suggestion)


class TestErrorHandler(unittest.TestCase):
    """Test the entry point error handler."""

    def test_handle_harness_error(self):
        stderr = StringIO()
        with redirect_stderr(stderr):
            code = ErrorHandler.handle_error(ConfigurationError("broken"), verbose_level=0)
        self.assertEqual(code, ErrorCode.CONFIGURATION_ERROR)
        self.assertIn("Error: broken", stderr.getvalue())

    def test_handle_unexpected_error(self):
        stderr = StringIO()
        with redirect_stderr(stderr):
            code = ErrorHandler.handle_error(RuntimeError("oops"), verbose_level=1)
        self.assertEqual(code, ErrorCode.INTERNAL_ERROR)
        self.assertIn("An unexpected error occurred", stderr.getvalue())
        self.assertIn("RuntimeError", stderr.getvalue())

    def test_wrap_main(self):
        @ErrorHandler.wrap_main
        def failing_main():
            raise CommandTimeoutError("sleep 100", 10)

        stderr = StringIO()
        with redirect_stderr(stderr):
            code = failing_main()
        self.assertEqual(code, ErrorCode.TIMEOUT)
        self.assertIn("Command timed out", stderr.getvalue())

    def test_wrap_main_passes_result(self):
        @ErrorHandler.wrap_main
        def ok_main():
            return 0

        self.assertEqual(ok_main(), 0)


if __name__ == '__main__':
    unittest.main()
