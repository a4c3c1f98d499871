#!/usr/bin/env -S python3 -B -u
"""
Bounded Process Runner

Every external command of the harness (the tool-under-test, nc listeners and
senders, ss readiness probes) is executed through this module so that no
command can hang a scenario.

Key features:
- Optional execution inside another network namespace via nsenter
- Hard wall-clock timeout with SIGTERM to the process group, SIGKILL after a
  grace period
- stdout and stderr merged into one captured stream
- Exit code check against an expected code, or none at all
- Background processes with their own deadline
- Transcript of every command and its output

Author: Network Analysis Tool
License: MIT
"""

import os
import shlex
import signal
import subprocess
import time
from typing import Dict, List, Optional, Set

from ..core.config_loader import get_runner_config
from ..core.exceptions import (
    CommandTimeoutError, ProcessSpawnError, UnexpectedExitCodeError
)
from ..core.models import Invocation, InvocationResult, TIMEOUT_EXIT_CODE
from ..core.structured_logging import get_logger


def _signal_group(process: subprocess.Popen, sig: int) -> None:
    """Send a signal to the session/process group led by `process`."""
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass


class BackgroundProcess:
    """
    A detached process whose output goes to a file.

    The process is bounded by `deadline`: `wait()` never blocks past it and
    stops the process once it has passed.
    """

    def __init__(self, process: subprocess.Popen, command: str, output_path: str,
                 deadline: float, kill_grace: float, logger):
        self.process = process
        self.command = command
        self.output_path = output_path
        self.deadline = deadline
        self.kill_grace = kill_grace
        self.logger = logger
        self.timed_out = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.poll() is None

    @property
    def returncode(self) -> Optional[int]:
        if self.timed_out:
            return TIMEOUT_EXIT_CODE
        return self.process.returncode

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Wait for the process to exit, at most `timeout` seconds.

        Returns:
            Exit code, or None if it is still running within its deadline
        """
        remaining = self.deadline - time.monotonic()
        if timeout is not None:
            remaining = min(remaining, timeout)
        try:
            self.process.wait(timeout=max(remaining, 0))
        except subprocess.TimeoutExpired:
            if time.monotonic() >= self.deadline:
                self.logger.debug("Background process reached its deadline", command=self.command)
                self.timed_out = True
                self.stop()
            else:
                return None
        return self.returncode

    def output_size(self) -> int:
        try:
            return os.path.getsize(self.output_path)
        except OSError:
            return 0

    def wait_for_output(self, min_size: int, timeout: float, poll_interval: float = 0.05) -> bool:
        """
        Wait until the process exited or wrote at least `min_size` bytes.

        Returns:
            True if enough output arrived or the process exited
        """
        end = time.monotonic() + timeout
        while True:
            if self.output_size() >= min_size:
                return True
            if self.wait(timeout=0) is not None:
                return True
            if time.monotonic() >= end:
                return False
            time.sleep(poll_interval)

    def read_output(self) -> str:
        try:
            with open(self.output_path, 'r', errors='replace') as f:
                return f.read()
        except FileNotFoundError:
            return ""

    def stop(self) -> Optional[int]:
        """Terminate the process group, kill it after the grace period."""
        if self.process.poll() is None:
            _signal_group(self.process, signal.SIGTERM)
            try:
                self.process.wait(timeout=self.kill_grace)
            except subprocess.TimeoutExpired:
                _signal_group(self.process, signal.SIGKILL)
                self.process.wait()
        return self.returncode


class ProcessRunner:
    """
    Runs commands with a hard timeout and captures their merged output.

    Attributes:
        command_timeout: Default wall-clock bound for invocations without one
        kill_grace: Seconds between SIGTERM and SIGKILL on timeout
        last_command: The most recently started command line
        session_ids: Session ids of the background processes this runner started
    """

    def __init__(self, command_timeout: Optional[float] = None, kill_grace: Optional[float] = None,
                 env: Optional[Dict[str, str]] = None, verbose_level: int = 0):
        config = get_runner_config()
        self.command_timeout = command_timeout if command_timeout is not None else config['command_timeout']
        self.kill_grace = kill_grace if kill_grace is not None else config['kill_grace']
        self.env = dict(config.get('env') or {})
        self.env.update(env or {})
        self.verbose_level = verbose_level
        self.logger = get_logger(__name__, verbose_level)
        self.last_command: Optional[str] = None
        self.session_ids: Set[int] = set()

    @staticmethod
    def build_argv(invocation: Invocation) -> List[str]:
        """Prefix the command with nsenter when a network namespace is requested."""
        argv = list(invocation.argv)
        if invocation.namespace:
            argv = ["nsenter", f"--net={invocation.namespace}"] + argv
        return argv

    def _environment(self, invocation: Invocation) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self.env)
        env.update(invocation.env or {})
        return env

    def _spawn(self, argv: List[str], command: str, invocation: Invocation, **kwargs) -> subprocess.Popen:
        try:
            process = subprocess.Popen(
                argv,
                env=self._environment(invocation),
                start_new_session=True,
                **kwargs
            )
        except OSError as e:
            raise ProcessSpawnError(command, str(e), cause=e)
        return process

    def _terminate(self, process: subprocess.Popen) -> str:
        """Stop a timed out process group and collect what it printed."""
        _signal_group(process, signal.SIGTERM)
        try:
            output, _ = process.communicate(timeout=self.kill_grace)
        except subprocess.TimeoutExpired:
            _signal_group(process, signal.SIGKILL)
            output, _ = process.communicate()
        return output or ""

    def run(self, invocation: Invocation) -> InvocationResult:
        """
        Execute an invocation and return its result.

        Raises:
            ProcessSpawnError: If the command cannot be started
            CommandTimeoutError: If it timed out and 124 was not the expected code
            UnexpectedExitCodeError: If the exit code differs from expected_rc
        """
        argv = self.build_argv(invocation)
        command = " ".join(shlex.quote(arg) for arg in argv)
        timeout = invocation.timeout if invocation.timeout is not None else self.command_timeout
        self.last_command = command

        if invocation.echo:
            self.logger.log_command_execution(command, namespace=invocation.namespace)
        else:
            self.logger.debug(f"Executing: {command}")

        process = self._spawn(
            argv, command, invocation,
            stdin=subprocess.PIPE if invocation.input is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding='utf-8',
            errors='replace'
        )

        timed_out = False
        try:
            output, _ = process.communicate(invocation.input, timeout=timeout)
            exit_code = process.returncode
        except subprocess.TimeoutExpired:
            timed_out = True
            output = self._terminate(process)
            output += f"\ntimeout: sending signal TERM to command '{argv[0]}'"
            exit_code = TIMEOUT_EXIT_CODE

        result = InvocationResult(
            argv=tuple(argv),
            command=command,
            output=output or "",
            exit_code=exit_code,
            timed_out=timed_out
        )

        if invocation.echo:
            self.logger.log_command_result(result.output, exit_code, invocation.expected_rc, timed_out)

        self.check(result, invocation.expected_rc, timeout)
        return result

    def check(self, result: InvocationResult, expected_rc: Optional[int],
              timeout: Optional[float] = None) -> None:
        """Raise if the result does not satisfy the expected exit code."""
        if result.timed_out and expected_rc != TIMEOUT_EXIT_CODE:
            raise CommandTimeoutError(result.command, timeout, result.output)
        if expected_rc is not None and result.exit_code != expected_rc:
            raise UnexpectedExitCodeError(result.command, result.exit_code, expected_rc, result.output)

    def start(self, invocation: Invocation, output_path: str,
              stdin_path: str = os.devnull) -> BackgroundProcess:
        """
        Start an invocation in the background with output going to a file.

        `invocation.timeout` becomes the deadline of the background process;
        `input` and `expected_rc` are not used.
        """
        argv = self.build_argv(invocation)
        command = " ".join(shlex.quote(arg) for arg in argv)
        timeout = invocation.timeout if invocation.timeout is not None else self.command_timeout
        self.last_command = command

        if invocation.echo:
            self.logger.log_command_execution(
                f"{command} <{stdin_path} &>{output_path} &",
                namespace=invocation.namespace
            )

        with open(stdin_path, 'rb') as stdin, open(output_path, 'wb') as output:
            process = self._spawn(
                argv, command, invocation,
                stdin=stdin,
                stdout=output,
                stderr=subprocess.STDOUT
            )
        self.session_ids.add(process.pid)

        return BackgroundProcess(
            process,
            command,
            output_path,
            deadline=time.monotonic() + timeout,
            kill_grace=self.kill_grace,
            logger=self.logger
        )
