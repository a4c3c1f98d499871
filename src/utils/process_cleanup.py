#!/usr/bin/env -S python3 -B -u
"""
Process Cleanup

Reaps processes that were left behind by a scenario. Every command the
harness runs is started in a new session, so the leftovers of one scenario
are exactly the live processes whose session id is one the scenario's
runner recorded.
"""

import os
from typing import Iterable, List

import psutil

from ..core.structured_logging import get_logger


def _session_of(proc: psutil.Process) -> int:
    try:
        return os.getsid(proc.pid)
    except (ProcessLookupError, PermissionError):
        return -1


def find_session_processes(session_ids: Iterable[int]) -> List[psutil.Process]:
    """Return live processes belonging to any of the given sessions."""
    sessions = set(session_ids)
    if not sessions:
        return []

    found = []
    for proc in psutil.process_iter(['pid', 'name']):
        if proc.pid == os.getpid():
            continue
        if _session_of(proc) in sessions:
            found.append(proc)
    return found


def reap_sessions(session_ids: Iterable[int], grace: float = 2.0, verbose_level: int = 0) -> int:
    """
    Terminate every process left in the given sessions.

    Processes still alive after `grace` seconds are killed.

    Returns:
        Number of processes that had to be reaped
    """
    logger = get_logger(__name__, verbose_level)
    procs = find_session_processes(session_ids)
    if not procs:
        return 0

    for proc in procs:
        logger.debug("Terminating leftover process", pid=proc.pid, name=proc.info.get('name'))
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        logger.warning(f"Killing leftover process {proc.pid}")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(alive, timeout=grace)

    return len(procs)
