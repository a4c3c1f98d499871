"""
Network Simulators Package

This package contains the namespace scenario tools of the harness:
- Network namespace creation and destruction
- Randomized topology generation
- Scenario context (host/container namespace pair)
- Connectivity probing with nc (TCP/UDP/SCTP)
- Port-forward scenario driver
"""
