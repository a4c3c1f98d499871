#!/usr/bin/env -S python3 -B -u
"""
Data Models for the Namespace Harness

This module provides type-safe data models using dataclasses and type hints
for the values passed between harness components.

Key Features:
- Immutable models for handles, invocations and results
- Typed scenario description with a single JSON serializer
- Clear documentation of all fields
"""

from dataclasses import dataclass, field, fields
from typing import Dict, List, Optional, Any, Iterator, Tuple, Union
from enum import Enum
import json

from .exceptions import ConfigurationError


TIMEOUT_EXIT_CODE = 124

# Port values are normally ints; strings pass through unvalidated so that
# malformed configurations can be fed to the tool-under-test.
PortValue = Union[int, str]


class IPFamily(str, Enum):
    """IP address family."""
    IPV4 = "4"
    IPV6 = "6"

    @property
    def flag(self) -> str:
        """Family switch understood by nc and ss."""
        return f"-{self.value}"


class Protocol(str, Enum):
    """Transport protocols a port mapping can forward."""
    TCP = "tcp"
    UDP = "udp"
    SCTP = "sctp"

    @property
    def nc_args(self) -> List[str]:
        """Extra nc arguments for this protocol (tcp is the nc default)."""
        if self is Protocol.UDP:
            return ["--udp"]
        if self is Protocol.SCTP:
            return ["--sctp"]
        return []

    @property
    def ss_flag(self) -> str:
        return {"tcp": "-t", "udp": "-u", "sctp": "-S"}[self.value]

    @property
    def needs_open_stdin(self) -> bool:
        """
        Whether the nc listener needs an always-open standard input.

        An sctp listener exits early with stdin at EOF, while tcp and udp
        listeners fail when stdin keeps producing data.
        """
        return self is Protocol.SCTP


class ScenarioState(str, Enum):
    """Lifecycle states of a port-forward scenario."""
    BUILT = "built"
    APPLIED = "applied"
    VERIFIED = "verified"
    TORN_DOWN = "torn_down"
    SETUP_FAILED = "setup_failed"
    VERIFY_FAILED = "verify_failed"
    TEARDOWN_FAILED = "teardown_failed"


@dataclass(frozen=True)
class NamespaceHandle:
    """
    Handle of an isolated network namespace.

    The namespace lives exactly as long as the placeholder process `pid`.
    """
    pid: int
    name: str = "namespace"

    @property
    def path(self) -> str:
        """Network namespace reference other processes can join."""
        return f"/proc/{self.pid}/ns/net"

    def __str__(self) -> str:
        return f"{self.name}(pid={self.pid})"


@dataclass(frozen=True)
class Invocation:
    """
    A single command execution request.

    Attributes:
        argv: Command and arguments
        namespace: Network namespace path to join, None for the caller's namespace
        input: Text written to standard input, None for no input
        timeout: Wall-clock bound in seconds, None for the runner default
        expected_rc: Required exit code, None to skip the check
        env: Extra environment variables
        echo: Whether the command and its output go to the transcript
    """
    argv: Tuple[str, ...]
    namespace: Optional[str] = None
    input: Optional[str] = None
    timeout: Optional[float] = None
    expected_rc: Optional[int] = 0
    env: Optional[Dict[str, str]] = field(default=None, hash=False)
    echo: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'argv', tuple(str(arg) for arg in self.argv))


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of an invocation: merged output, exit code and timeout flag."""
    argv: Tuple[str, ...]
    command: str
    output: str
    exit_code: int
    timed_out: bool = False

    @property
    def lines(self) -> List[str]:
        return self.output.splitlines()

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True)
class SubnetAssignment:
    """Addressing of one address family within a scenario network."""
    family: IPFamily
    subnet: str
    gateway: str
    container_ip: str

    def to_dict(self) -> Dict[str, str]:
        return {"subnet": self.subnet, "gateway": self.gateway}


@dataclass(frozen=True)
class NetworkTopology:
    """Subnets of a scenario network, IPv4 first."""
    subnets: Tuple[SubnetAssignment, ...]

    @property
    def families(self) -> List[IPFamily]:
        return [assignment.family for assignment in self.subnets]

    @property
    def static_ips(self) -> List[str]:
        return [assignment.container_ip for assignment in self.subnets]

    def for_family(self, family: IPFamily) -> SubnetAssignment:
        for assignment in self.subnets:
            if assignment.family == family:
                return assignment
        raise KeyError(f"no IPv{family.value} subnet in topology")


@dataclass(frozen=True)
class PortMapping:
    """Host-to-container port forwarding rule, optionally spanning a range."""
    host_ip: str
    container_port: PortValue
    host_port: PortValue
    range: int = 1
    protocols: Tuple[Protocol, ...] = (Protocol.TCP,)

    @property
    def protocol(self) -> str:
        """Wire form: comma separated protocol names."""
        return ",".join(protocol.value for protocol in self.protocols)

    def port_pairs(self) -> Iterator[Tuple[int, int]]:
        """Yield (container_port, host_port) for each offset of the range, in lockstep."""
        for offset in range(self.range):
            yield int(self.container_port) + offset, int(self.host_port) + offset

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host_ip": self.host_ip,
            "container_port": self.container_port,
            "host_port": self.host_port,
            "range": self.range,
            "protocol": self.protocol
        }


@dataclass(frozen=True)
class NetworkDescriptor:
    """Network metadata embedded in the configuration document."""
    name: str = "podman1"
    id: str = ""
    driver: str = "bridge"
    network_interface: str = "podman1"
    interface_name: str = "eth0"
    ipv6_enabled: bool = True
    internal: bool = False
    dns_enabled: bool = True
    ipam_driver: str = "host-local"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkDescriptor":
        unknown = sorted(set(data) - {f.name for f in fields(cls)})
        if unknown:
            raise ConfigurationError(
                f"Unknown network setting(s): {', '.join(unknown)}",
                details={"valid_keys": [f.name for f in fields(cls)]}
            )
        return cls(**data)


@dataclass(frozen=True)
class PortForwardScenario:
    """
    Everything the tool-under-test needs for one setup/teardown cycle.

    `to_dict()` is the only place where the wire schema is spelled out.
    """
    container_id: str
    container_name: str
    port_mapping: PortMapping
    topology: NetworkTopology
    network: NetworkDescriptor = field(default_factory=NetworkDescriptor)

    def to_dict(self) -> Dict[str, Any]:
        network = self.network
        return {
            "container_id": self.container_id,
            "container_name": self.container_name,
            "port_mappings": [self.port_mapping.to_dict()],
            "networks": {
                network.name: {
                    "static_ips": self.topology.static_ips,
                    "interface_name": network.interface_name
                }
            },
            "network_info": {
                network.name: {
                    "name": network.name,
                    "id": network.id,
                    "driver": network.driver,
                    "network_interface": network.network_interface,
                    "subnets": [assignment.to_dict() for assignment in self.topology.subnets],
                    "ipv6_enabled": network.ipv6_enabled,
                    "internal": network.internal,
                    "dns_enabled": network.dns_enabled,
                    "ipam_options": {
                        "driver": network.ipam_driver
                    }
                }
            }
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
