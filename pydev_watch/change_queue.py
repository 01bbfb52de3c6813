# change_queue.py
'''
Debounced, deduplicated delivery of file changes to subscriptions.

Raw change notifications are appended to a pending list; a trailing-edge
timer restarts on every new event and fires once the project has been quiet
for ``wait`` seconds.  On fire:

1. keep only the last event per path
2. drop events whose content hash equals the last hash seen for that path
3. hand every subscription the events its expression matches

    t=0.00  a.py  (hash 1)
    t=0.10  a.py  (hash 2)   } one window
    t=0.30  b.py             }
    t=1.30  → flush: [a.py (hash 2), b.py]
'''

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .cancel import CancelToken
from .expression import evaluate
from .hashing import hash_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
  '''A change to one file.  *path* is absolute.'''
  path: str
  hash: Optional[str] = None


def deduplicate_change_events(events: Iterable[ChangeEvent]) -> List[ChangeEvent]:
  '''Keep the last event per path, ordered by each path's last occurrence.'''
  latest: Dict[str, ChangeEvent] = {}
  for event in events:
    latest.pop(event.path, None)
    latest[event.path] = event
  return list(latest.values())


class FileChangeQueue:
  def __init__(
    self,
    project: Path,
    subscriptions: Sequence['Subscription'],  # noqa: F821
    *,
    abort: CancelToken,
    wait: float = 1.0,
    hash_files: bool = False,
  ) -> None:
    self._project = str(project)
    self._subscriptions = list(subscriptions)
    self._abort = abort
    self._wait = wait
    self._hash_files = hash_files
    self._loop = asyncio.get_running_loop()

    self._pending: List[ChangeEvent] = []
    self._timer: Optional[asyncio.TimerHandle] = None
    # last known content hash per path; lives as long as the queue
    self._hashes: Dict[str, str] = {}
    # newest in-flight hashing task per path, so events for one path are
    # queued in arrival order whatever order the hashes finish in
    self._hashing: Dict[str, asyncio.Task] = {}
    self._closed = False

  # ─────────────────────────────────────────────────────────────────────────
  # Intake
  # ─────────────────────────────────────────────────────────────────────────
  def push(self, event: ChangeEvent) -> None:
    if self._closed or self._abort.cancelled:
      return
    previous = self._hashing.get(event.path)
    needs_hash = self._hash_files and event.hash is None
    if previous is None and not needs_hash:
      self._enqueue(event)
      return

    task = self._loop.create_task(self._hash_then_enqueue(event, previous, needs_hash))
    self._hashing[event.path] = task

    def _forget(t: asyncio.Task, path: str = event.path) -> None:
      if self._hashing.get(path) is t:
        del self._hashing[path]

    task.add_done_callback(_forget)

  async def _hash_then_enqueue(
    self,
    event: ChangeEvent,
    previous: Optional[asyncio.Task],
    needs_hash: bool,
  ) -> None:
    if needs_hash:
      event = replace(event, hash=await hash_file(event.path))
    if previous is not None:
      await asyncio.wait([previous])
    if not self._closed:
      self._enqueue(event)

  def _enqueue(self, event: ChangeEvent) -> None:
    self._pending.append(event)
    if self._timer is not None:
      self._timer.cancel()
    self._timer = self._loop.call_later(self._wait, self._flush)

  # ─────────────────────────────────────────────────────────────────────────
  # Delivery
  # ─────────────────────────────────────────────────────────────────────────
  def _relative(self, path: str) -> str:
    return os.path.relpath(path, self._project)

  def _wants(self, subscription: 'Subscription', event: ChangeEvent) -> bool:  # noqa: F821
    # a path that cannot be evaluated is skipped, the rest of the batch still goes out
    try:
      return evaluate(subscription.expression, self._relative(event.path))
    except ValueError as exc:
      logger.warning('skipping %s for trigger %s: %s', event.path, subscription.name, exc)
      return False

  def _flush(self) -> None:
    self._timer = None
    events = deduplicate_change_events(self._pending)
    self._pending = []

    if self._abort.cancelled:
      return

    survivors: List[ChangeEvent] = []
    for event in events:
      if event.hash is not None:
        if self._hashes.get(event.path) == event.hash:
          logger.debug('%s content unchanged, skipping', event.path)
          continue
        self._hashes[event.path] = event.hash
      survivors.append(event)

    if not survivors:
      return

    for subscription in self._subscriptions:
      relevant = [e for e in survivors if self._wants(subscription, e)]
      if relevant:
        logger.debug('%d change(s) for trigger %s', len(relevant), subscription.name)
        subscription.schedule(relevant)

  def close(self) -> None:
    '''Stop the timer and discard anything still pending.'''
    self._closed = True
    if self._timer is not None:
      self._timer.cancel()
      self._timer = None
    self._pending = []
    for task in list(self._hashing.values()):
      task.cancel()
