#!/usr/bin/env -S python3 -B -u
"""
Test Suite for the Topology Generator

Generated subnets, gateways and container addresses must always be valid:
addresses lie inside their subnet, differ from each other, and never use the
network base, the gateway or the IPv4 broadcast address.
"""

import unittest
import ipaddress
import os
import random
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.core.models import IPFamily
from src.simulators.topology_generator import (
    MAX_RANDOM_PORT, gateway_from_subnet, generate_topology, random_ip_in_subnet,
    random_ips_in_subnet, random_port, random_string, random_subnet
)


class TestRandomSubnets(unittest.TestCase):
    """Test subnet generation for both families."""

    def test_ipv4_subnet_shape(self):
        for _ in range(50):
            network = ipaddress.ip_network(random_subnet(IPFamily.IPV4))
            self.assertEqual(network.prefixlen, 24)
            self.assertTrue(network.subnet_of(ipaddress.ip_network("10.0.0.0/8")))

    def test_ipv6_subnet_shape(self):
        for _ in range(50):
            network = ipaddress.ip_network(random_subnet(IPFamily.IPV6))
            self.assertEqual(network.prefixlen, 64)
            self.assertTrue(network.subnet_of(ipaddress.ip_network("fd00::/8")))

    def test_seeded_rng_is_reproducible(self):
        self.assertEqual(
            random_subnet(IPFamily.IPV6, random.Random(7)),
            random_subnet(IPFamily.IPV6, random.Random(7))
        )

    def test_gateway_is_first_address(self):
        self.assertEqual(gateway_from_subnet("10.1.2.0/24"), "10.1.2.1")
        self.assertEqual(gateway_from_subnet("fd12:1:2:3::/64"), "fd12:1:2:3::1")


class TestAddressSelection(unittest.TestCase):
    """Test container address constraints."""

    def _check_distinct_and_contained(self, family):
        subnet = random_subnet(family)
        network = ipaddress.ip_network(subnet)
        gateway = ipaddress.ip_address(gateway_from_subnet(subnet))
        addresses = [ipaddress.ip_address(a) for a in random_ips_in_subnet(subnet, 3)]

        everything = [gateway] + addresses
        self.assertEqual(len(set(everything)), 4)
        for address in everything:
            self.assertIn(address, network)
            self.assertNotEqual(address, network.network_address)
        if family is IPFamily.IPV4:
            self.assertNotIn(network.broadcast_address, everything)

    def test_ipv4_addresses(self):
        for _ in range(50):
            self._check_distinct_and_contained(IPFamily.IPV4)

    def test_ipv6_addresses(self):
        for _ in range(50):
            self._check_distinct_and_contained(IPFamily.IPV6)

    def test_smallest_usable_subnets(self):
        self.assertEqual(random_ip_in_subnet("192.168.0.0/30"), "192.168.0.2")
        self.assertIn(random_ip_in_subnet("fd00::/126"), ("fd00::2", "fd00::3"))

    def test_too_small_subnet(self):
        with self.assertRaises(ValueError):
            random_ip_in_subnet("192.168.0.0/31")
        with self.assertRaises(ValueError):
            random_ips_in_subnet("192.168.0.0/30", 2)

    def test_invalid_subnet(self):
        with self.assertRaises(ValueError):
            random_ip_in_subnet("not-a-subnet")


class TestIdentifiers(unittest.TestCase):
    """Test ports, strings and topology assembly."""

    def test_random_port_range(self):
        for _ in range(200):
            self.assertTrue(1 <= random_port() <= MAX_RANDOM_PORT)

    def test_random_string(self):
        value = random_string()
        self.assertEqual(len(value), 10)
        self.assertTrue(value.isalnum())
        self.assertEqual(len(random_string(64)), 64)

    def test_generate_dual_topology(self):
        topology = generate_topology([IPFamily.IPV6, IPFamily.IPV4])
        self.assertEqual(topology.families, [IPFamily.IPV4, IPFamily.IPV6])
        for assignment in topology.subnets:
            network = ipaddress.ip_network(assignment.subnet)
            self.assertIn(ipaddress.ip_address(assignment.container_ip), network)
            self.assertEqual(assignment.gateway, gateway_from_subnet(assignment.subnet))
            self.assertNotEqual(assignment.container_ip, assignment.gateway)

    def test_generate_single_family(self):
        topology = generate_topology([IPFamily.IPV6])
        self.assertEqual(topology.families, [IPFamily.IPV6])
        with self.assertRaises(KeyError):
            topology.for_family(IPFamily.IPV4)


if __name__ == '__main__':
    unittest.main()
