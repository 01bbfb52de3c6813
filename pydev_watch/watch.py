# watch.py
'''
Glue: backend → change queue → subscriptions, plus the shutdown sequence.

    watch = await start_watch(config)   # returns once the backend is ready
    ...
    await watch.shutdown()              # idempotent

``run(config)`` does the same and shuts down on SIGINT / SIGTERM.
'''

from __future__ import annotations

import asyncio
import logging
import signal
from typing import List, Optional, Set

from .cancel import CancelToken
from .change_queue import ChangeEvent, FileChangeQueue
from .config import WatchConfig
from .dev_watchdog import FileWatchingBackend, select_backend
from .errors import WatchBackendError
from .subscription import Subscription

logger = logging.getLogger(__name__)


class Watch:
  def __init__(self, config: WatchConfig, backend: FileWatchingBackend) -> None:
    self.config = config
    self._loop = asyncio.get_running_loop()
    self._abort = CancelToken()
    self.subscriptions: List[Subscription] = [
      Subscription(trigger, self._abort) for trigger in config.triggers
    ]
    self._queue = FileChangeQueue(
      config.project,
      self.subscriptions,
      abort=self._abort,
      wait=config.debounce.wait,
      hash_files=config.hash_files,
    )
    self._backend = backend
    self._ready: 'asyncio.Future[None]' = self._loop.create_future()
    self._buffered = 0
    self._shutdown_task: Optional['asyncio.Future[None]'] = None
    self._background: Set[asyncio.Task] = set()
    self._closed = asyncio.Event()

  # ─────────────────────────────────────────────────────────────────────────
  # Backend listener
  # ─────────────────────────────────────────────────────────────────────────
  def on_ready(self) -> None:
    if self._ready.done():
      return
    if self._buffered:
      logger.debug('ignored %d change(s) reported during initial scan', self._buffered)
    logger.info('watching %s', self.config.project)
    self._ready.set_result(None)

  def on_change(self, path: str) -> None:
    if not self._ready.done():
      self._buffered += 1
      return
    self._queue.push(ChangeEvent(path))

  def on_error(self, error: Exception) -> None:
    if not isinstance(error, WatchBackendError):
      error = WatchBackendError(str(error))
    if not self._ready.done():
      self._ready.set_exception(error)
      return
    logger.error('watch backend failed: %s', error)
    self.shutdown_soon()

  # ─────────────────────────────────────────────────────────────────────────
  # Lifecycle
  # ─────────────────────────────────────────────────────────────────────────
  async def _start(self) -> None:
    await self._backend.start(self)
    try:
      await self._ready
    except WatchBackendError:
      self._queue.close()
      await self._backend.close()
      raise

    for subscription in self.subscriptions:
      if subscription.trigger_config.initial_run:
        subscription.schedule([])

  def shutdown_soon(self) -> None:
    '''Start shutting down without waiting (for signal handlers).'''
    task = self._loop.create_task(self.shutdown())
    self._background.add(task)
    task.add_done_callback(self._background.discard)

  async def shutdown(self) -> None:
    if self._shutdown_task is None:
      self._shutdown_task = asyncio.ensure_future(self._shutdown())
    await asyncio.shield(self._shutdown_task)

  async def _shutdown(self) -> None:
    logger.info('shutting down')
    try:
      await self._backend.close()
    finally:
      self._abort.cancel('shutdown')
      self._queue.close()
      await asyncio.gather(*(s.wait_idle() for s in self.subscriptions))
      for subscription in self.subscriptions:
        await subscription.teardown()
      self._closed.set()

  @property
  def closed(self) -> bool:
    return self._closed.is_set()

  async def wait_closed(self) -> None:
    await self._closed.wait()


async def start_watch(config: WatchConfig) -> Watch:
  backend_factory = config.backend or select_backend
  watch = Watch(config, backend_factory(config.project))
  await watch._start()
  return watch


async def run(config: WatchConfig) -> None:
  '''Watch until SIGINT / SIGTERM, then shut down cleanly.'''
  watch = await start_watch(config)
  loop = asyncio.get_running_loop()
  handled: List[int] = []

  for sig in (signal.SIGINT, signal.SIGTERM):
    try:
      loop.add_signal_handler(sig, watch.shutdown_soon)
      handled.append(sig)
    except (NotImplementedError, RuntimeError):
      pass  # no loop signal support (Windows); KeyboardInterrupt still works

  try:
    await watch.wait_closed()
  finally:
    for sig in handled:
      loop.remove_signal_handler(sig)
    await watch.shutdown()
