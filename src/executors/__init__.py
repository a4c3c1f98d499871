"""
Executors Package

Bounded execution of external commands, optionally inside a network namespace.
"""
