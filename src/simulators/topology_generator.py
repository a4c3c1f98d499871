#!/usr/bin/env -S python3 -B -u
"""
Topology Generator

Randomized, always-valid network parameters for scenarios: private subnets,
gateway and container addresses, ports and identifiers.

Randomness comes from `random.SystemRandom` unless a seeded `random.Random`
is passed, so concurrent scenarios share no generator state.
"""

import ipaddress
import random
import string
from typing import Iterable, List, Optional

from ..core.models import IPFamily, NetworkTopology, SubnetAssignment


_rng = random.SystemRandom()

_ALPHANUMERIC = string.ascii_letters + string.digits

MAX_RANDOM_PORT = 32768


def _pick(rng: Optional[random.Random]) -> random.Random:
    return rng if rng is not None else _rng


def random_string(length: int = 10, rng: Optional[random.Random] = None) -> str:
    """Random alphanumeric string."""
    rng = _pick(rng)
    return "".join(rng.choice(_ALPHANUMERIC) for _ in range(length))


def random_port(rng: Optional[random.Random] = None) -> int:
    """Random port in [1, 32768]."""
    return _pick(rng).randint(1, MAX_RANDOM_PORT)


def random_subnet(family: IPFamily = IPFamily.IPV4, rng: Optional[random.Random] = None) -> str:
    """
    Random private subnet.

    IPv4 subnets are 10.X.Y.0/24. IPv6 subnets are /64 unique local prefixes
    fdXX:hhhh:hhhh:hhhh::/64.
    """
    rng = _pick(rng)
    if IPFamily(family) is IPFamily.IPV4:
        return f"10.{rng.randint(0, 255)}.{rng.randint(0, 255)}.0/24"

    hextets = [0xfd00 | rng.randint(0, 0xff)] + [rng.randint(0, 0xffff) for _ in range(3)]
    return ":".join(f"{h:x}" for h in hextets) + "::/64"


def gateway_from_subnet(cidr: str) -> str:
    """First address after the network base."""
    network = ipaddress.ip_network(cidr, strict=False)
    return str(network.network_address + 1)


def _host_offsets(network):
    # base is the network address, base+1 the gateway; IPv4 excludes broadcast
    last = network.num_addresses - (2 if network.version == 4 else 1)
    return 2, last


def random_ip_in_subnet(cidr: str, rng: Optional[random.Random] = None) -> str:
    """
    Random address usable by a container in the subnet.

    Raises:
        ValueError: If the subnet is invalid or has no address left after the
            base and the gateway
    """
    return random_ips_in_subnet(cidr, 1, rng)[0]


def random_ips_in_subnet(cidr: str, count: int, rng: Optional[random.Random] = None) -> List[str]:
    """
    `count` pairwise distinct container addresses in the subnet.

    Raises:
        ValueError: If the subnet is invalid or too small
    """
    network = ipaddress.ip_network(cidr, strict=False)
    first, last = _host_offsets(network)
    available = max(last - first + 1, 0)
    if available < count:
        raise ValueError(f"subnet {cidr} has only {available} usable addresses, need {count}")

    rng = _pick(rng)
    chosen = []
    while len(chosen) < count:
        offset = rng.randint(first, last)
        if offset not in chosen:
            chosen.append(offset)
    return [str(network.network_address + offset) for offset in chosen]


def generate_topology(families: Iterable[IPFamily] = (IPFamily.IPV4,),
                      rng: Optional[random.Random] = None) -> NetworkTopology:
    """One subnet per family with gateway and container address, IPv4 first."""
    wanted = {IPFamily(family) for family in families}
    assignments = []
    for family in (IPFamily.IPV4, IPFamily.IPV6):
        if family not in wanted:
            continue
        subnet = random_subnet(family, rng)
        assignments.append(SubnetAssignment(
            family=family,
            subnet=subnet,
            gateway=gateway_from_subnet(subnet),
            container_ip=random_ip_in_subnet(subnet, rng)
        ))
    return NetworkTopology(subnets=tuple(assignments))
