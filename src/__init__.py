#!/usr/bin/env -S python3 -B -u
"""
nsharness - Namespace Port-Forward Scenario Harness

Integration-test harness that drives a container network tool through
setup/verify/teardown inside isolated Linux network namespaces.
"""

__version__ = '1.0.0'
__author__ = 'Network Analysis Tool'
__license__ = 'MIT'

# Package metadata
__all__ = [
    'core',
    'executors',
    'simulators',
    'utils',
]
