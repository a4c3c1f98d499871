#!/usr/bin/env -S python3 -B -u
"""
Configuration loader for the namespace harness.

Provides centralized configuration loading for all components.
"""

import copy
import os
import tempfile
import yaml
from pathlib import Path
from typing import Dict, Any, List

from .exceptions import ConfigurationError


DEFAULT_NETWORK_ID = "ed82e3a703682a9c09629d3cf45c1f1e7da5b32aeff3faf82837ef4d005356e6"


def _defaults() -> Dict[str, Any]:
    return {
        'tool': os.environ.get('NSHARNESS_TOOL', './bin/netavark'),
        'verbose_level': 0,
        'tmpdir': os.environ.get('NSHARNESS_TMPDIR', tempfile.gettempdir()),
        'runner': {
            'command_timeout': 10,
            'kill_grace': 10,
            'env': {}
        },
        'probe': {
            'listener_timeout': 5,
            'readiness_timeout': 5,
            'collect_timeout': 2,
            'poll_interval': 0.05,
            'payload_length': 10
        },
        'namespace': {
            'creation_timeout': 5
        },
        'network': {
            'name': 'podman1',
            'id': DEFAULT_NETWORK_ID,
            'driver': 'bridge',
            'network_interface': 'podman1',
            'interface_name': 'eth0',
            'ipv6_enabled': True,
            'internal': False,
            'dns_enabled': True,
            'ipam_driver': 'host-local'
        },
        # The tool must not reach a firewalld running in the real host
        # namespace, unsetting the variable would fall back to the default bus.
        'tool_env': {
            'RUST_BACKTRACE': 'full',
            'DBUS_SYSTEM_BUS_ADDRESS': ''
        }
    }


def _config_files() -> List[Path]:
    config_files = []

    env_config = os.environ.get('NSHARNESS_CONF')
    if env_config:
        config_files.append(Path(env_config))

    config_files.extend([
        Path.home() / 'nsharness.yaml',
        Path('./nsharness.yaml')
    ])
    return config_files


def load_harness_config() -> Dict[str, Any]:
    """
    Load harness configuration with proper precedence.

    Configuration file location precedence:
    1. Environment variable NSHARNESS_CONF (if set)
    2. ~/nsharness.yaml (user's home directory)
    3. ./nsharness.yaml (current directory)

    Sections that are mappings are merged key by key over the defaults.

    Returns:
        Dictionary containing configuration values

    Raises:
        ConfigurationError: If the first existing file is not a valid YAML mapping
    """
    config = _defaults()

    for config_file in _config_files():
        if not config_file.exists():
            continue

        try:
            with open(config_file, 'r') as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Cannot load configuration: {e}",
                config_file=str(config_file),
                cause=e
            )

        if not isinstance(file_config, dict):
            raise ConfigurationError(
                "Configuration must be a mapping",
                config_file=str(config_file)
            )

        for key, value in file_config.items():
            if isinstance(config.get(key), dict) and isinstance(value, dict):
                config[key].update(value)
            else:
                config[key] = value
        break

    return config


def _section(name: str) -> Dict[str, Any]:
    return copy.deepcopy(load_harness_config()[name])


def get_runner_config() -> Dict[str, Any]:
    """
    Get process runner settings.

    Returns:
        Dictionary with command_timeout, kill_grace and env
    """
    return _section('runner')


def get_probe_config() -> Dict[str, Any]:
    """
    Get connectivity probe settings.

    Returns:
        Dictionary with listener, readiness and collect timeouts
    """
    return _section('probe')


def get_namespace_config() -> Dict[str, Any]:
    """Get namespace manager settings."""
    return _section('namespace')


def get_network_config() -> Dict[str, Any]:
    """Get the network descriptor defaults embedded in scenario documents."""
    return _section('network')


def get_tool_config() -> Dict[str, Any]:
    """
    Get tool-under-test settings.

    Returns:
        Dictionary with the tool path and the environment it runs with
    """
    config = load_harness_config()
    return {
        'path': config['tool'],
        'env': dict(config['tool_env'])
    }
