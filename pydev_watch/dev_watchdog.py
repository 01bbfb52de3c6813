# dev_watchdog.py
'''
File-watching backends built on the `watchdog` library.

Install watchdog first:
    pip install watchdog

Contract
--------
backend = select_backend(project)
await backend.start(listener)
    • listener.on_ready()       once, after the initial traversal
    • listener.on_change(path)  absolute path of a changed *file*
    • listener.on_error(exc)    backend failure
await backend.close()           idempotent

All listener calls happen on the event loop thread that called ``start``.
'''

from __future__ import annotations

import asyncio
import logging
import os
import platform
from pathlib import Path
from typing import Callable, Optional, Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from .errors import WatchBackendError

logger = logging.getLogger(__name__)

POLLING_ENV = 'PYDEV_WATCH_POLLING'
HEALTH_INTERVAL = 1.0


class BackendListener(Protocol):
  def on_ready(self) -> None: ...
  def on_change(self, path: str) -> None: ...
  def on_error(self, error: Exception) -> None: ...


class FileWatchingBackend(Protocol):
  async def start(self, listener: BackendListener) -> None: ...
  async def close(self) -> None: ...


# ─────────────────────────────────────────────────────────────────────────────
# watchdog thread → event loop
# ─────────────────────────────────────────────────────────────────────────────
class _ChangeHandler(FileSystemEventHandler):
  def __init__(self, loop: asyncio.AbstractEventLoop, callback: Callable[[str], None]) -> None:
    super().__init__()
    self._loop = loop
    self._cb = callback

  def _emit(self, path) -> None:
    if isinstance(path, bytes):
      path = os.fsdecode(path)
    path = os.path.abspath(path)
    try:
      self._loop.call_soon_threadsafe(self._cb, path)
    except RuntimeError:
      pass  # loop already closed during shutdown

  def on_any_event(self, event: FileSystemEvent) -> None:  # type: ignore[override]
    if event.is_directory or event.event_type in ('opened', 'closed_no_write'):
      return
    self._emit(event.src_path)
    dest = getattr(event, 'dest_path', '')
    if dest:
      self._emit(dest)


# ─────────────────────────────────────────────────────────────────────────────
# Backend
# ─────────────────────────────────────────────────────────────────────────────
class ObserverBackend:
  '''Recursive watch of *project* through a watchdog observer.'''

  def __init__(self, project: Path, observer_factory: Callable[[], BaseObserver] = Observer) -> None:
    self.project = Path(project)
    self._observer_factory = observer_factory
    self._observer: Optional[BaseObserver] = None
    self._health: Optional[asyncio.Task] = None
    self._closing = False

  def __repr__(self) -> str:
    return f'<{type(self).__name__} {self.project} observer={self._observer_factory.__name__}>'

  async def start(self, listener: BackendListener) -> None:
    loop = asyncio.get_running_loop()
    observer = self._observer_factory()
    observer.schedule(_ChangeHandler(loop, listener.on_change), str(self.project), recursive=True)
    try:
      # start() returns after the emitters have done their initial traversal
      await asyncio.to_thread(observer.start)
    except Exception as exc:
      listener.on_error(WatchBackendError(f'could not watch {self.project}: {exc}'))
      return
    self._observer = observer
    self._health = loop.create_task(self._check_health(listener))
    listener.on_ready()

  async def _check_health(self, listener: BackendListener) -> None:
    while not self._closing:
      await asyncio.sleep(HEALTH_INTERVAL)
      observer = self._observer
      if observer is not None and not observer.is_alive() and not self._closing:
        listener.on_error(WatchBackendError(f'observer for {self.project} stopped unexpectedly'))
        return

  async def close(self) -> None:
    if self._closing:
      return
    self._closing = True
    if self._health is not None:
      self._health.cancel()
    observer, self._observer = self._observer, None
    if observer is None:
      return

    def stop() -> None:
      observer.stop()
      observer.join()

    await asyncio.to_thread(stop)


# ─────────────────────────────────────────────────────────────────────────────
# Capability probe
# ─────────────────────────────────────────────────────────────────────────────
def _is_wsl_windows_mount(path: Path) -> bool:
  '''inotify events don't cross the 9P bridge WSL2 uses for /mnt/<drive>.'''
  if platform.system() != 'Linux' or 'microsoft' not in platform.release().lower():
    return False
  parts = path.resolve().parts
  return len(parts) >= 3 and parts[1] == 'mnt' and len(parts[2]) == 1 and parts[2].isalpha()


def needs_polling(project: Path) -> bool:
  if os.environ.get(POLLING_ENV, '').lower() in ('1', 'true', 'yes'):
    return True
  return _is_wsl_windows_mount(project)


def select_backend(project: Path) -> ObserverBackend:
  if needs_polling(project):
    logger.info('using polling watcher for %s', project)
    return ObserverBackend(project, PollingObserver)
  logger.info('using native watcher for %s', project)
  return ObserverBackend(project, Observer)
