#!/usr/bin/env -S python3 -B -u
"""
Port-Forward Scenario Driver

Builds a randomized port-forward configuration, hands it to the
tool-under-test and proves every forwarded port works.

A scenario moves through a fixed lifecycle:

    built --apply--> applied --verify--> verified --teardown--> torn_down

A failing step moves it to setup_failed, verify_failed or teardown_failed and
aborts the remaining steps.

Usage:
    nsharness-portfw [-v] [--tool PATH] ip=dual proto=tcp,udp range=3
"""

import argparse
import random
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from ..core.config_loader import get_network_config
from ..core.exceptions import (
    ErrorHandler, HarnessError, ScenarioArgumentError, ScenarioSetupError,
    ScenarioStateError, ScenarioTeardownError, ScenarioVerifyError
)
from ..core.models import (
    InvocationResult, IPFamily, NetworkDescriptor, PortForwardScenario,
    PortMapping, PortValue, Protocol, ScenarioState
)
from ..core.structured_logging import get_logger, setup_logging
from .connectivity_prober import ConnectivityProber
from .scenario_context import ScenarioContext
from .topology_generator import generate_topology, random_port, random_string


_IP_FAMILIES = {
    "4": (IPFamily.IPV4,),
    "6": (IPFamily.IPV6,),
    "dual": (IPFamily.IPV4, IPFamily.IPV6),
}


def _port_value(value: str) -> PortValue:
    # non-numeric ports are kept as given so bad input reaches the tool
    return int(value) if value.isdigit() else value


@dataclass
class ScenarioParameters:
    """Parsed key=value arguments of a port-forward scenario."""
    families: Tuple[IPFamily, ...] = (IPFamily.IPV4,)
    protocols: Tuple[Protocol, ...] = (Protocol.TCP,)
    host_ip: str = ""
    host_port: Optional[PortValue] = None
    container_port: Optional[PortValue] = None
    range: int = 1

    @classmethod
    def from_args(cls, args: Sequence[str]) -> "ScenarioParameters":
        """
        Parse arguments such as ip=dual proto=tcp,udp hostport=8080 range=3.

        Raises:
            ScenarioArgumentError: For unknown keys or invalid values
        """
        params = cls()
        for arg in args:
            key, sep, value = arg.partition("=")
            if not sep:
                raise ScenarioArgumentError(arg, "have the form key=value")

            if key == "ip":
                if value not in _IP_FAMILIES:
                    raise ScenarioArgumentError(arg, "use ip=4, ip=6 or ip=dual")
                params.families = _IP_FAMILIES[value]
            elif key == "proto":
                try:
                    params.protocols = tuple(Protocol(name) for name in value.split(","))
                except ValueError:
                    raise ScenarioArgumentError(
                        arg, "list protocols from: " + ", ".join(p.value for p in Protocol)
                    )
            elif key == "hostip":
                params.host_ip = value
            elif key == "hostport":
                params.host_port = _port_value(value)
            elif key == "containerport":
                params.container_port = _port_value(value)
            elif key == "range":
                if not value.isdigit() or int(value) < 1:
                    raise ScenarioArgumentError(arg, "be a positive integer range")
                params.range = int(value)
            else:
                raise ScenarioArgumentError(
                    arg, "use one of the keys ip, proto, hostip, hostport, containerport, range"
                )
        return params


def build_scenario(params: ScenarioParameters, network: Optional[NetworkDescriptor] = None,
                   rng: Optional[random.Random] = None) -> PortForwardScenario:
    """Fill in random topology, ports and identifiers for the parameters."""
    if network is None:
        network = NetworkDescriptor.from_dict(get_network_config())

    host_port = params.host_port if params.host_port is not None else random_port(rng)
    container_port = (params.container_port if params.container_port is not None
                      else random_port(rng))

    return PortForwardScenario(
        container_id=random_string(64, rng),
        container_name="name-" + random_string(10, rng),
        port_mapping=PortMapping(
            host_ip=params.host_ip,
            container_port=container_port,
            host_port=host_port,
            range=params.range,
            protocols=params.protocols
        ),
        topology=generate_topology(params.families, rng),
        network=network
    )


class PortForwardTester:
    """
    Lifecycle of one port-forward scenario inside an open ScenarioContext.

    Attributes:
        state: Current ScenarioState
        setup_result: Result of the tool's setup run, once applied
        probes: (protocol, family, container_port, connect_ip, host_port) of
            every probe issued by verify()
    """

    def __init__(self, context: ScenarioContext, scenario: PortForwardScenario,
                 prober: Optional[ConnectivityProber] = None, verbose_level: int = 0):
        self.context = context
        self.scenario = scenario
        self.prober = prober or ConnectivityProber(context, verbose_level=verbose_level)
        self.logger = get_logger(__name__, verbose_level)
        self.state = ScenarioState.BUILT
        self.setup_result: Optional[InvocationResult] = None
        self.probes: List[Tuple[Protocol, IPFamily, int, str, int]] = []

    def _require(self, step: str, *allowed: ScenarioState) -> None:
        if self.state not in allowed:
            raise ScenarioStateError(step, self.state.value, [s.value for s in allowed])

    def _tool(self, action: str, config_json: str) -> InvocationResult:
        return self.context.run_tool(action, config_json, expected_rc=0)

    def apply(self) -> InvocationResult:
        """Run the tool's setup step with the scenario document."""
        self._require("apply", ScenarioState.BUILT)
        config_json = self.scenario.to_json()
        self.logger.transcript(config_json)
        try:
            with self.logger.timer("scenario setup"):
                self.setup_result = self._tool("setup", config_json)
        except (HarnessError, AssertionError) as e:
            self.state = ScenarioState.SETUP_FAILED
            raise ScenarioSetupError(self.state.value, cause=e) from e
        self.state = ScenarioState.APPLIED
        return self.setup_result

    def probe_plan(self) -> List[Tuple[Protocol, IPFamily, int, str, int]]:
        """Every probe verify() issues: protocols, then offsets, then families."""
        mapping = self.scenario.port_mapping
        plan = []
        for protocol in mapping.protocols:
            for container_port, host_port in mapping.port_pairs():
                for assignment in self.scenario.topology.subnets:
                    connect_ip = mapping.host_ip or assignment.gateway
                    plan.append((protocol, assignment.family, container_port, connect_ip, host_port))
        return plan

    def verify(self) -> None:
        """Probe every forwarded port for every protocol and family."""
        self._require("verify", ScenarioState.APPLIED)
        try:
            with self.logger.timer("scenario verify"):
                for probe in self.probe_plan():
                    self.probes.append(probe)
                    self.prober.probe(*probe)
        except (HarnessError, AssertionError, ValueError) as e:
            self.state = ScenarioState.VERIFY_FAILED
            raise ScenarioVerifyError(self.state.value, cause=e) from e
        self.state = ScenarioState.VERIFIED

    def teardown(self) -> InvocationResult:
        """Run the tool's teardown step with the same document."""
        self._require("teardown", ScenarioState.APPLIED, ScenarioState.VERIFIED)
        try:
            with self.logger.timer("scenario teardown"):
                result = self._tool("teardown", self.scenario.to_json())
        except (HarnessError, AssertionError) as e:
            self.state = ScenarioState.TEARDOWN_FAILED
            raise ScenarioTeardownError(self.state.value, cause=e) from e
        self.state = ScenarioState.TORN_DOWN
        return result

    def run(self) -> ScenarioState:
        """Apply, verify and tear down; the first failure aborts the rest."""
        self.apply()
        self.verify()
        self.teardown()
        return self.state


def run_port_forward_scenario(context: ScenarioContext, *args: str,
                              verbose_level: int = 0) -> PortForwardTester:
    """Parse key=value arguments, build a scenario and run it in `context`."""
    params = ScenarioParameters.from_args(args)
    tester = PortForwardTester(context, build_scenario(params), verbose_level=verbose_level)
    tester.run()
    return tester


@ErrorHandler.wrap_main
def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run a port-forward scenario against a network tool in isolated namespaces",
        epilog="Scenario keys: ip=4|6|dual proto=tcp[,udp,sctp] hostip=IP "
               "hostport=PORT containerport=PORT range=N"
    )
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Increase verbosity (-v, -vv, -vvv)')
    parser.add_argument('--tool', help='Path of the tool-under-test (default from configuration)')
    parser.add_argument('scenario', nargs='*', metavar='key=value',
                        help='Scenario arguments')

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    logger = get_logger(__name__, args.verbose)

    params = ScenarioParameters.from_args(args.scenario)
    with ScenarioContext(tool=args.tool, verbose_level=args.verbose) as context:
        tester = PortForwardTester(context, build_scenario(params), verbose_level=args.verbose)
        tester.run()

    logger.info(f"Scenario {tester.state.value}: {len(tester.probes)} probes passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
