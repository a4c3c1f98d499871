#!/usr/bin/env -S python3 -B -u
"""
End-to-End Port Forwarding Tests

Runs real scenarios in fresh namespaces. Requires root, unshare, nsenter,
ip, nc (ncat) and ss. The scenario tests additionally need the
tool-under-test (NSHARNESS_TOOL or the `tool` configuration key).
"""

import unittest
import os
import shutil
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.core.config_loader import get_tool_config
from src.core.exceptions import ScenarioSetupError
from src.core.models import IPFamily, Protocol, ScenarioState
from src.executors.process_runner import ProcessRunner
from src.simulators.connectivity_prober import ConnectivityProber, ensure_sctp_module
from src.simulators.port_forward_tester import run_port_forward_scenario
from src.simulators.scenario_context import ScenarioContext
from src.simulators.topology_generator import random_port


def _require_tools(*tools):
    if os.geteuid() != 0:
        raise unittest.SkipTest("Port forwarding tests require root privileges")
    for tool in ("unshare", "nsenter", "ip", "nc", "ss") + tools:
        if shutil.which(tool) is None:
            raise unittest.SkipTest(f"{tool} is not installed")


class TestConnectivityProber(unittest.TestCase):
    """Probe over a plain veth pair, without the tool-under-test."""

    @classmethod
    def setUpClass(cls):
        _require_tools()

    def setUp(self):
        self.ctx = ScenarioContext(tool="/bin/true")
        self.ctx.open()
        self.addCleanup(self.ctx.close)

        pid = str(self.ctx.container.pid)
        self.ctx.run_in_host(["ip", "link", "add", "nsh-h", "type", "veth", "peer", "name", "nsh-c"])
        self.ctx.run_in_host(["ip", "link", "set", "nsh-c", "netns", pid])
        self.ctx.run_in_host(["ip", "addr", "add", "10.254.0.1/24", "dev", "nsh-h"])
        self.ctx.run_in_host(["ip", "link", "set", "nsh-h", "up"])
        self.ctx.run_in_container(["ip", "addr", "add", "10.254.0.2/24", "dev", "nsh-c"])
        self.ctx.run_in_container(["ip", "link", "set", "nsh-c", "up"])
        self.ctx.run_in_container(["ip", "link", "set", "lo", "up"])
        self.prober = ConnectivityProber(self.ctx)

    def test_tcp_round_trip(self):
        port = random_port()
        self.prober.probe(Protocol.TCP, IPFamily.IPV4, port, "10.254.0.2", port)

    def test_udp_round_trip(self):
        port = random_port()
        self.prober.probe(Protocol.UDP, IPFamily.IPV4, port, "10.254.0.2", port)

    def test_no_listener_left_behind(self):
        port = random_port()
        self.prober.probe(Protocol.TCP, IPFamily.IPV4, port, "10.254.0.2", port)
        result = self.ctx.run_in_container(
            self.prober.readiness_argv(Protocol.TCP, IPFamily.IPV4, port), expected_rc=None
        )
        self.assertEqual(result.output.strip(), "")


class TestPortForwardScenarios(unittest.TestCase):
    """Drive the tool-under-test through complete scenarios."""

    @classmethod
    def setUpClass(cls):
        _require_tools()
        tool = get_tool_config()['path']
        if not (os.path.isfile(tool) and os.access(tool, os.X_OK)):
            raise unittest.SkipTest(f"tool-under-test not found: {tool}")

    def _run(self, *args):
        with ScenarioContext() as ctx:
            return run_port_forward_scenario(ctx, *args)

    def test_single_tcp_ipv4(self):
        tester = self._run("proto=tcp", "ip=4", "range=1")
        self.assertEqual(tester.state, ScenarioState.TORN_DOWN)
        self.assertEqual(len(tester.probes), 1)

    def test_dual_stack_tcp_udp_range(self):
        tester = self._run("proto=tcp,udp", "ip=dual", "range=3")
        self.assertEqual(tester.state, ScenarioState.TORN_DOWN)
        self.assertEqual(len(tester.probes), 12)

    def test_ipv6_only(self):
        tester = self._run("proto=tcp", "ip=6")
        self.assertEqual(tester.state, ScenarioState.TORN_DOWN)

    def test_non_numeric_port_fails_setup(self):
        with self.assertRaises(ScenarioSetupError):
            self._run("containerport=abc")

    def test_sctp(self):
        if not ensure_sctp_module(ProcessRunner()):
            self.skipTest("sctp kernel module not available")
        tester = self._run("proto=sctp", "ip=dual")
        self.assertEqual(tester.state, ScenarioState.TORN_DOWN)


if __name__ == '__main__':
    unittest.main()
