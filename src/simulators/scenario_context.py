#!/usr/bin/env -S python3 -B -u
"""
Scenario Context

Owns everything one scenario needs: a host namespace, a container namespace,
a private scratch directory and the process runner. Leaving the context
always destroys both namespaces, reaps processes the runner left behind and
removes the scratch directory, whatever happened inside it.

Example:
    with ScenarioContext(tool="./bin/netavark") as ctx:
        ctx.run_in_host(["ip", "addr"])
        ctx.run_tool("setup", config_json)
"""

import os
import shutil
import tempfile
from typing import Dict, List, Optional, Sequence

from ..core.config_loader import get_tool_config, load_harness_config
from ..core.models import Invocation, InvocationResult, NamespaceHandle
from ..core.structured_logging import get_logger
from ..executors.process_runner import ProcessRunner
from ..utils.process_cleanup import reap_sessions
from .namespace_manager import NamespaceManager


class ScenarioContext:
    """
    Host/container namespace pair plus scratch space for one scenario.

    Attributes:
        tool: Path of the tool-under-test
        runner: ProcessRunner used for every command of the scenario
        host: Handle of the host namespace (set while the context is open)
        container: Handle of the container namespace
        tmpdir: Scratch directory unique to this context
    """

    def __init__(self, tool: Optional[str] = None, runner: Optional[ProcessRunner] = None,
                 namespaces: Optional[NamespaceManager] = None, tmpdir: Optional[str] = None,
                 verbose_level: int = 0):
        config = load_harness_config()
        tool_config = get_tool_config()
        self.tool = tool or tool_config['path']
        self.tool_env: Dict[str, str] = tool_config['env']
        self.base_tmpdir = tmpdir or config['tmpdir']
        self.verbose_level = verbose_level
        self.logger = get_logger(__name__, verbose_level)
        self.runner = runner or ProcessRunner(verbose_level=verbose_level)
        self.namespaces = namespaces or NamespaceManager(verbose_level=verbose_level)
        self.host: Optional[NamespaceHandle] = None
        self.container: Optional[NamespaceHandle] = None
        self.tmpdir: Optional[str] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def open(self) -> None:
        """Create both namespaces and the scratch directory, bring up host lo."""
        try:
            self.tmpdir = tempfile.mkdtemp(prefix="nsharness_", dir=self.base_tmpdir)
            self.host = self.namespaces.create_namespace("host")
            self.container = self.namespaces.create_namespace("container")
            self.run_in_host(["ip", "link", "set", "lo", "up"])
        except BaseException:
            self.close()
            raise
        self.logger.debug("Scenario context ready",
                          host=self.host.path, container=self.container.path, tmpdir=self.tmpdir)

    def close(self) -> None:
        """Tear down namespaces, leftover processes and scratch space."""
        self.namespaces.destroy_all()
        self.host = None
        self.container = None

        reaped = reap_sessions(self.runner.session_ids, verbose_level=self.verbose_level)
        if reaped:
            self.logger.debug(f"Reaped {reaped} leftover processes")
        self.runner.session_ids.clear()

        if self.tmpdir:
            shutil.rmtree(self.tmpdir, ignore_errors=True)
            self.tmpdir = None

    @property
    def host_netns_path(self) -> str:
        return self.namespaces.namespace_path(self.host)

    @property
    def container_netns_path(self) -> str:
        return self.namespaces.namespace_path(self.container)

    def scratch_path(self, name: str) -> str:
        """Path of a file inside the scratch directory."""
        return os.path.join(self.tmpdir, name)

    def invocation(self, argv: Sequence[str], namespace: Optional[str], **kwargs) -> Invocation:
        return Invocation(argv=tuple(argv), namespace=namespace, **kwargs)

    def run_in_host(self, argv: Sequence[str], **kwargs) -> InvocationResult:
        """Run a command in the host namespace (see Invocation for kwargs)."""
        return self.runner.run(self.invocation(argv, self.host_netns_path, **kwargs))

    def run_in_container(self, argv: Sequence[str], **kwargs) -> InvocationResult:
        """Run a command in the container namespace."""
        return self.runner.run(self.invocation(argv, self.container_netns_path, **kwargs))

    def tool_command(self, action: str) -> List[str]:
        return [self.tool, action, self.container_netns_path]

    def run_tool(self, action: str, config_json: str, expected_rc: Optional[int] = 0,
                 **kwargs) -> InvocationResult:
        """
        Run `<tool> <action> <container-ns-path>` in the host namespace with
        the configuration document on standard input.
        """
        env = dict(self.tool_env)
        env.update(kwargs.pop('env', None) or {})
        return self.run_in_host(
            self.tool_command(action),
            input=config_json,
            expected_rc=expected_rc,
            env=env,
            **kwargs
        )
