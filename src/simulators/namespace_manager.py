#!/usr/bin/env -S python3 -B -u
"""
Network Namespace Manager

Creates and destroys anonymous network namespaces. Each namespace is held
open by a placeholder process (`unshare --net sleep infinity`); the namespace
is addressed through the placeholder's `/proc/<pid>/ns/net` and disappears
when the placeholder is killed. Nothing is registered under /run/netns, so
namespaces never outlive the harness.

Key Features:
- Creation confirmed by observing the new namespace, not by sleeping
- Bounded creation time
- Handles become stale after destruction
- Context manager destroys every namespace still alive
"""

import os
import signal
import subprocess
import time
from typing import Dict, List, Optional

from ..core.config_loader import get_namespace_config
from ..core.exceptions import NamespaceCreationError, StaleNamespaceError
from ..core.models import NamespaceHandle
from ..core.structured_logging import get_logger


PLACEHOLDER_COMMAND = ["unshare", "--net", "sleep", "infinity"]


def _netns_link(pid: Optional[int] = None) -> Optional[str]:
    """Identity of a process' network namespace, e.g. 'net:[4026531840]'."""
    path = "/proc/self/ns/net" if pid is None else f"/proc/{pid}/ns/net"
    try:
        return os.readlink(path)
    except OSError:
        return None


class NamespaceManager:
    """
    Tracks the placeholder processes backing isolated network namespaces.

    Example:
        with NamespaceManager() as manager:
            host = manager.create_namespace("host")
            print(manager.namespace_path(host))
    """

    def __init__(self, creation_timeout: Optional[float] = None, verbose_level: int = 0):
        config = get_namespace_config()
        self.creation_timeout = (creation_timeout if creation_timeout is not None
                                 else config['creation_timeout'])
        self.verbose_level = verbose_level
        self.logger = get_logger(__name__, verbose_level)
        self._placeholders: Dict[NamespaceHandle, subprocess.Popen] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy_all()
        return False

    @property
    def active_handles(self) -> List[NamespaceHandle]:
        return list(self._placeholders)

    def create_namespace(self, name: str = "namespace") -> NamespaceHandle:
        """
        Create a fresh network namespace.

        Raises:
            NamespaceCreationError: If the placeholder cannot be started, exits
                early, or the namespace does not appear in time
        """
        try:
            process = subprocess.Popen(
                PLACEHOLDER_COMMAND,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                start_new_session=True
            )
        except OSError as e:
            raise NamespaceCreationError(name, str(e), cause=e)

        own_netns = _netns_link()
        deadline = time.monotonic() + self.creation_timeout

        while True:
            if process.poll() is not None:
                stderr = process.stderr.read().decode(errors='replace').strip()
                process.stderr.close()
                raise NamespaceCreationError(
                    name,
                    f"placeholder exited with code {process.returncode}"
                    + (f": {stderr}" if stderr else ""),
                    details={"stderr": stderr}
                )

            link = _netns_link(process.pid)
            if link is not None and link != own_netns:
                break

            if time.monotonic() >= deadline:
                self._kill(process)
                raise NamespaceCreationError(
                    name, f"namespace not ready after {self.creation_timeout}s"
                )
            time.sleep(0.01)

        process.stderr.close()
        handle = NamespaceHandle(pid=process.pid, name=name)
        self._placeholders[handle] = process
        self.logger.debug(f"Created {name} namespace", pid=process.pid, netns=link)
        return handle

    def namespace_path(self, handle: NamespaceHandle) -> str:
        """
        Path other processes use to join the namespace.

        Raises:
            StaleNamespaceError: If the handle is not active
        """
        if handle not in self._placeholders:
            raise StaleNamespaceError(handle)
        return handle.path

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            os.kill(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        process.wait()

    def destroy_namespace(self, handle: NamespaceHandle) -> None:
        """
        Kill the placeholder so the namespace goes away.

        Raises:
            StaleNamespaceError: If the handle is not active
        """
        process = self._placeholders.pop(handle, None)
        if process is None:
            raise StaleNamespaceError(handle)
        self._kill(process)
        self.logger.debug(f"Destroyed {handle.name} namespace", pid=handle.pid)

    def destroy_all(self) -> None:
        for handle in list(self._placeholders):
            self.destroy_namespace(handle)
