# cancel.py
'''
Composable cancellation for routines and the processes they spawn.

    token = CancelToken()
    child = token.child()       # cancelled whenever *token* is
    child.cancel()              # does not touch *token*

Tokens are owned by a single event loop; none of the methods are thread-safe.
'''

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from .errors import AbortError


class CancelToken:
  def __init__(self) -> None:
    self._cancelled = False
    # created on first wait so it binds to the loop that awaits it
    self._event: Optional[asyncio.Event] = None
    self._callbacks: List[Callable[[], None]] = []
    self._unlink: Optional[Callable[[], None]] = None
    self.reason: Optional[str] = None

  def __repr__(self) -> str:
    return f'<CancelToken cancelled={self.cancelled}>'

  @property
  def cancelled(self) -> bool:
    return self._cancelled

  def cancel(self, reason: Optional[str] = None) -> None:
    '''Cancel this token and every child; later calls are no-ops.'''
    if self._cancelled:
      return
    self._cancelled = True
    self.reason = reason
    if self._event is not None:
      self._event.set()
    callbacks, self._callbacks = self._callbacks, []
    for cb in callbacks:
      cb()

  def add_callback(self, cb: Callable[[], None]) -> None:
    '''Run *cb* once on cancellation (immediately if already cancelled).'''
    if self.cancelled:
      cb()
    else:
      self._callbacks.append(cb)

  def remove_callback(self, cb: Callable[[], None]) -> None:
    try:
      self._callbacks.remove(cb)
    except ValueError:
      pass

  def child(self) -> 'CancelToken':
    child = CancelToken()

    def _propagate() -> None:
      child.cancel(self.reason)

    self.add_callback(_propagate)
    child._unlink = lambda: self.remove_callback(_propagate)
    return child

  def detach(self) -> None:
    '''Stop following the parent token; no-op for root tokens.'''
    if self._unlink is not None:
      self._unlink()
      self._unlink = None

  async def wait(self, timeout: Optional[float] = None) -> bool:
    '''Wait for cancellation; return True if cancelled, False on timeout.'''
    if self._cancelled:
      return True
    if self._event is None:
      self._event = asyncio.Event()
    if timeout is None:
      await self._event.wait()
      return True
    try:
      await asyncio.wait_for(self._event.wait(), timeout)
    except asyncio.TimeoutError:
      return False
    return True

  def raise_if_cancelled(self) -> None:
    if self.cancelled:
      raise AbortError(self.reason or 'cancelled')
