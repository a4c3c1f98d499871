#!/usr/bin/env -S python3 -B -u
"""
Test Suite for the Configuration Loader

Configuration files are selected through NSHARNESS_CONF so the tests never
depend on files in the home or working directory.
"""

import unittest
import os
import shutil
import sys
import tempfile
from unittest import mock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.core.config_loader import (
    DEFAULT_NETWORK_ID, get_network_config, get_probe_config, get_runner_config,
    get_tool_config, load_harness_config
)
from src.core.exceptions import ConfigurationError, ErrorCode
from src.simulators.port_forward_tester import ScenarioParameters, build_scenario


class TestConfigLoader(unittest.TestCase):
    """Test defaults, overrides and error reporting."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="nsharness_conf_")
        self.config_file = os.path.join(self.tmpdir, "nsharness.yaml")
        self.env = mock.patch.dict(os.environ, {"NSHARNESS_CONF": self.config_file})
        self.env.start()

    def tearDown(self):
        self.env.stop()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def write(self, text):
        with open(self.config_file, "w") as f:
            f.write(text)

    def test_defaults(self):
        self.write("")
        config = load_harness_config()
        self.assertEqual(config["runner"]["command_timeout"], 10)
        self.assertEqual(config["runner"]["kill_grace"], 10)
        self.assertEqual(config["probe"]["listener_timeout"], 5)
        self.assertEqual(config["network"]["id"], DEFAULT_NETWORK_ID)
        self.assertEqual(config["tool_env"]["DBUS_SYSTEM_BUS_ADDRESS"], "")

    def test_sections_are_merged(self):
        self.write("runner:\n  command_timeout: 30\nprobe:\n  readiness_timeout: 1\n")
        runner = get_runner_config()
        self.assertEqual(runner["command_timeout"], 30)
        self.assertEqual(runner["kill_grace"], 10)
        self.assertEqual(get_probe_config()["readiness_timeout"], 1)
        self.assertEqual(get_probe_config()["collect_timeout"], 2)

    def test_tool_settings(self):
        self.write("tool: /usr/libexec/podman/netavark\ntool_env:\n  RUST_LOG: debug\n")
        tool = get_tool_config()
        self.assertEqual(tool["path"], "/usr/libexec/podman/netavark")
        self.assertEqual(tool["env"]["RUST_LOG"], "debug")
        self.assertEqual(tool["env"]["RUST_BACKTRACE"], "full")

    def test_tool_from_environment(self):
        self.write("")
        with mock.patch.dict(os.environ, {"NSHARNESS_TOOL": "/opt/tool"}):
            self.assertEqual(get_tool_config()["path"], "/opt/tool")

    def test_accessors_return_copies(self):
        self.write("")
        get_network_config()["name"] = "changed"
        self.assertEqual(get_network_config()["name"], "podman1")

    def test_malformed_yaml(self):
        self.write("runner: [unclosed\n")
        with self.assertRaises(ConfigurationError) as cm:
            load_harness_config()
        self.assertEqual(cm.exception.error_code, ErrorCode.CONFIGURATION_ERROR)
        self.assertEqual(cm.exception.details["config_file"], self.config_file)

    def test_non_mapping(self):
        self.write("- just\n- a list\n")
        with self.assertRaises(ConfigurationError):
            load_harness_config()

    def test_unknown_network_key_rejected_by_scenario(self):
        self.write("network:\n  subnet_pool: 10.0.0.0/8\n")
        with self.assertRaises(ConfigurationError) as cm:
            build_scenario(ScenarioParameters())
        self.assertIn("subnet_pool", cm.exception.message)


if __name__ == '__main__':
    unittest.main()
