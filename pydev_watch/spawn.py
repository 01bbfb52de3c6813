# spawn.py
'''
Shell commands bound to a routine's cancellation token.

    spawn = create_spawn(task_id, token)
    result = await spawn('pytest -q')

Output is streamed line by line with a ``'<task id> > '`` prefix.  When the
token cancels, the whole process tree is terminated and ``AbortError`` is
raised; a non-zero exit raises ``SpawnError``.
'''

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Mapping, Optional, TextIO

from .cancel import CancelToken
from .errors import AbortError, SpawnError
from .kill_tree import kill_process_tree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpawnResult:
  exit_code: int
  stdout: str
  stderr: str


Spawn = Callable[..., Awaitable[SpawnResult]]


async def _pipe(stream: asyncio.StreamReader, prefix: str, sink: TextIO, lines: List[str]) -> None:
  while True:
    raw = await stream.readline()
    if not raw:
      return
    line = raw.decode(errors='replace').rstrip('\n')
    lines.append(line)
    sink.write(f'{prefix}{line}\n')
    sink.flush()


def create_spawn(task_id: str, token: Optional[CancelToken] = None) -> Spawn:
  prefix = f'{task_id} > '

  async def spawn(
    command: str,
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    grace_period: float = 30.0,
  ) -> SpawnResult:
    if token is not None:
      token.raise_if_cancelled()

    proc = await asyncio.create_subprocess_shell(
      command,
      stdout=asyncio.subprocess.PIPE,
      stderr=asyncio.subprocess.PIPE,
      cwd=cwd,
      env=dict(env) if env is not None else None,
    )
    logger.debug('task %s spawned pid %d: %s', task_id, proc.pid, command)

    killer: List[asyncio.Task] = []

    def _kill() -> None:
      killer.append(asyncio.get_running_loop().create_task(kill_process_tree(proc.pid, grace_period)))

    if token is not None:
      token.add_callback(_kill)

    out: List[str] = []
    err: List[str] = []
    try:
      await asyncio.gather(
        _pipe(proc.stdout, prefix, sys.stdout, out),
        _pipe(proc.stderr, prefix, sys.stderr, err),
      )
      exit_code = await proc.wait()
      if killer:
        await killer[0]
    finally:
      if token is not None:
        token.remove_callback(_kill)

    if token is not None and token.cancelled:
      raise AbortError(f'task {task_id} was aborted')

    stdout, stderr = '\n'.join(out), '\n'.join(err)
    if exit_code != 0:
      logger.error('task %s exited with an error', task_id)
      raise SpawnError(exit_code, stdout, stderr)
    return SpawnResult(exit_code, stdout, stderr)

  return spawn
