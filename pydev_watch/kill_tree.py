# kill_tree.py
'''
Stop a process and every descendant.

    await kill_process_tree(pid, grace_period=30.0)

1. collect root + all descendants
2. SIGTERM each of them
3. poll every ``poll_interval`` until all are gone
4. after ``grace_period`` SIGKILL whatever is still hanging

"No such process" is expected (things exit on their own) and ignored; any
other failure to signal raises ``ProcessSignalError``.
'''

from __future__ import annotations

import asyncio
import logging
from typing import List

import psutil

from .errors import ProcessSignalError

logger = logging.getLogger(__name__)


def _collect(root_pid: int) -> List[psutil.Process]:
  try:
    root = psutil.Process(root_pid)
  except psutil.NoSuchProcess:
    return []
  try:
    children = root.children(recursive=True)
  except psutil.NoSuchProcess:
    children = []
  return [root] + children


def _is_alive(proc: psutil.Process) -> bool:
  try:
    return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
  except psutil.NoSuchProcess:
    return False


def _signal(proc: psutil.Process, force: bool) -> None:
  try:
    if force:
      proc.kill()
    else:
      proc.terminate()
  except psutil.NoSuchProcess:
    pass
  except (psutil.AccessDenied, OSError) as exc:
    raise ProcessSignalError(proc.pid, str(exc)) from exc


async def kill_process_tree(
  root_pid: int,
  grace_period: float = 30.0,
  poll_interval: float = 0.1,
) -> None:
  procs = _collect(root_pid)
  if not procs:
    return

  for proc in procs:
    _signal(proc, force=False)

  loop = asyncio.get_running_loop()
  deadline = loop.time() + grace_period
  forced = False
  hanging = procs

  while True:
    hanging = [p for p in hanging if _is_alive(p)]
    if not hanging:
      break
    if not forced and loop.time() >= deadline:
      logger.debug('sending SIGKILL to processes %s', [p.pid for p in hanging])
      for proc in hanging:
        _signal(proc, force=True)
      forced = True
    await asyncio.sleep(poll_interval)

  logger.debug('all processes terminated (root %d)', root_pid)
