#!/usr/bin/env -S python3 -B -u
"""
Connectivity Prober

Proves that a forwarded port delivers data: an nc listener runs in the
container namespace, an nc sender in the host namespace connects to the
forwarded address and sends a random payload, and the listener's captured
output must equal the payload.

The listener is only contacted after `ss` reports its socket, so a slow
listener start cannot turn into a lost payload.
"""

import time
from typing import List, Optional

from ..core.assertions import AssertionEngine
from ..core.config_loader import get_probe_config
from ..core.exceptions import ExecutionError, ListenerNotReadyError, ProcessSpawnError
from ..core.models import Invocation, IPFamily, Protocol
from ..core.structured_logging import get_logger
from ..executors.process_runner import BackgroundProcess, ProcessRunner
from .topology_generator import random_string


def ensure_sctp_module(runner: ProcessRunner) -> bool:
    """Load the sctp kernel module; returns whether SCTP is usable."""
    try:
        result = runner.run(Invocation(argv=("modprobe", "sctp"), expected_rc=None))
    except (ExecutionError, ProcessSpawnError):
        return False
    return result.succeeded


class ConnectivityProber:
    """
    Runs single-payload transfers across the namespaces of a ScenarioContext.

    Args:
        context: Open ScenarioContext providing runner, namespaces and scratch dir
        assertions: Engine used for the payload comparison
    """

    def __init__(self, context, assertions: Optional[AssertionEngine] = None,
                 verbose_level: int = 0):
        self.context = context
        self.runner: ProcessRunner = context.runner
        self.assertions = assertions or AssertionEngine(self.runner, verbose_level)
        self.config = get_probe_config()
        self.logger = get_logger(__name__, verbose_level)
        self.probe_count = 0

    @staticmethod
    def nc_args(protocol: Protocol, family: IPFamily) -> List[str]:
        return ["nc", family.flag] + protocol.nc_args

    def listener_argv(self, protocol: Protocol, family: IPFamily, port: int) -> List[str]:
        return self.nc_args(protocol, family) + ["-l", "-p", str(port)]

    def sender_argv(self, protocol: Protocol, family: IPFamily, ip: str, port: int) -> List[str]:
        return self.nc_args(protocol, family) + [ip, str(port)]

    def readiness_argv(self, protocol: Protocol, family: IPFamily, port: int) -> List[str]:
        return ["ss", "-H", "-n", "-l", protocol.ss_flag, family.flag, "sport", "=", f":{port}"]

    def start_listener(self, protocol: Protocol, family: IPFamily, port: int,
                       output_path: str) -> BackgroundProcess:
        """Start nc listening in the container namespace."""
        stdin_path = "/dev/zero" if protocol.needs_open_stdin else "/dev/null"
        invocation = Invocation(
            argv=tuple(self.listener_argv(protocol, family, port)),
            namespace=self.context.container_netns_path,
            timeout=self.config['listener_timeout']
        )
        return self.runner.start(invocation, output_path, stdin_path=stdin_path)

    def wait_until_listening(self, listener: BackgroundProcess, protocol: Protocol,
                             family: IPFamily, port: int) -> None:
        """
        Poll ss until the listener's socket shows up.

        Raises:
            ListenerNotReadyError: If the listener exits or never binds in time
        """
        invocation = Invocation(
            argv=tuple(self.readiness_argv(protocol, family, port)),
            namespace=self.context.container_netns_path,
            expected_rc=None,
            echo=False
        )
        deadline = time.monotonic() + self.config['readiness_timeout']

        while True:
            if not listener.alive:
                raise ListenerNotReadyError(
                    listener.command,
                    f"listener exited with code {listener.returncode}",
                    listener.read_output()
                )
            if self.runner.run(invocation).output.strip():
                return
            if time.monotonic() >= deadline:
                listener.stop()
                raise ListenerNotReadyError(
                    listener.command,
                    f"port {port}/{protocol.value} not listening after "
                    f"{self.config['readiness_timeout']}s",
                    listener.read_output()
                )
            time.sleep(self.config['poll_interval'])

    def probe(self, protocol: Protocol, family: IPFamily, container_port: int,
              connect_ip: str, host_port: int) -> None:
        """
        Send a fresh payload to connect_ip:host_port and check that the
        listener on container_port received it.

        Raises:
            ListenerNotReadyError: If the listener never becomes ready
            ExecutionError: If the sender fails or times out
            AssertionMismatchError: If the received data differs from the payload
        """
        protocol, family = Protocol(protocol), IPFamily(family)
        self.probe_count += 1
        payload = random_string(self.config['payload_length'])
        output_path = self.context.scratch_path(f"nc-out-{self.probe_count}")

        self.logger.debug("Probing", protocol=protocol.value, family=family.value,
                          container_port=container_port, connect_ip=connect_ip,
                          host_port=host_port)

        listener = self.start_listener(protocol, family, container_port, output_path)
        try:
            self.wait_until_listening(listener, protocol, family, container_port)
            self.context.run_in_host(
                self.sender_argv(protocol, family, connect_ip, host_port),
                input=payload + "\n"
            )
            listener.wait_for_output(len(payload), self.config['collect_timeout'],
                                     self.config['poll_interval'])
        finally:
            listener.stop()

        received = listener.read_output().rstrip("\n")
        self.assertions.check(received, "==", payload, "ncat received data")
