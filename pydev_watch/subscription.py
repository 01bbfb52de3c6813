# subscription.py
'''
Per-trigger task scheduling.

A ``Subscription`` owns every invocation of one trigger's routine and makes
sure at most one runs at a time:

    idle ──trigger()──▶ running ──settled──▶ idle
                          │
       interruptible:     ├─ trigger() ─▶ interrupting ─▶ (old stops) ─▶ running
       blocking:          └─ trigger() ─▶ awaiting slot ─▶ (old ends)  ─▶ running
                                           (one follow-up, extra calls coalesce)

    any state ──teardown()──▶ torn down

Changes arriving while a task is busy are accumulated per path and handed to
the next invocation, so nothing is dropped by an interruption.

Each invocation runs under a retry loop.  Ordinary triggers retry up to
``retry.max_retries`` times with backoff; persistent triggers restart forever
(clean exit or failure alike) until cancelled.
'''

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .cancel import CancelToken
from .change_queue import ChangeEvent
from .config import Trigger, short_id
from .errors import AbortError, RoutineError
from .expression import Expression
from .spawn import Spawn, create_spawn

logger = logging.getLogger(__name__)

IDLE = 'idle'
RUNNING = 'running'
INTERRUPTING = 'interrupting'
AWAITING_SLOT = 'awaiting_slot'
TORN_DOWN = 'torn_down'


@dataclass
class ChangeContext:
  '''
  What ``on_change`` receives.

  • files   : deduplicated changes for this invocation ([] for the initial run)
  • attempt : 0 for the first try, +1 per retry / persistent restart
  • first   : True only for the trigger's very first invocation
  • token   : cancelled when the routine should stop
  • spawn   : runs shell commands that are killed when *token* cancels
  '''
  files: List[ChangeEvent]
  attempt: int
  first: bool
  token: CancelToken
  spawn: Spawn
  task_id: str
  trigger: str


@dataclass
class TeardownContext:
  trigger: str
  spawn: Spawn


@dataclass
class _ActiveTask:
  id: str
  token: CancelToken
  queued: bool = False
  future: Optional['asyncio.Future[None]'] = field(default=None, repr=False)

  async def settled(self) -> None:
    '''Wait for the task to finish, whatever the outcome.'''
    if self.future is not None:
      await asyncio.wait([self.future])


async def _call(routine: Callable[..., Any], ctx: Any) -> Any:
  result = routine(ctx)
  if inspect.isawaitable(result):
    result = await result
  return result


class Subscription:
  def __init__(self, trigger: Trigger, abort: Optional[CancelToken] = None) -> None:
    self.trigger_config = trigger
    self._abort = abort if abort is not None else CancelToken()
    self._active: Optional[_ActiveTask] = None
    self._pending: Dict[str, ChangeEvent] = {}
    self._first = True
    self._torn_down = False
    self._teardown_task: Optional['asyncio.Future[None]'] = None
    self._scheduled: Set[asyncio.Task] = set()

  def __repr__(self) -> str:
    return f'<Subscription {self.name} state={self.state}>'

  @property
  def name(self) -> str:
    return self.trigger_config.name

  @property
  def expression(self) -> Expression:
    return self.trigger_config.expression

  @property
  def active_task_id(self) -> Optional[str]:
    return self._active.id if self._active is not None else None

  @property
  def state(self) -> str:
    if self._torn_down:
      return TORN_DOWN
    active = self._active
    if active is None:
      return IDLE
    if active.token.cancelled:
      return INTERRUPTING
    if active.queued:
      return AWAITING_SLOT
    return RUNNING

  # ─────────────────────────────────────────────────────────────────────────
  # Scheduling
  # ─────────────────────────────────────────────────────────────────────────
  def schedule(self, events: Sequence[ChangeEvent] = ()) -> asyncio.Task:
    '''Fire-and-forget ``trigger``; a final failure is logged, not raised.'''
    task = asyncio.get_running_loop().create_task(self.trigger(events))
    self._scheduled.add(task)
    task.add_done_callback(self._scheduled_done)
    return task

  def _scheduled_done(self, task: asyncio.Task) -> None:
    self._scheduled.discard(task)
    if task.cancelled():
      return
    error = task.exception()
    if error is not None:
      logger.error('trigger %s failed: %s', self.name, error, exc_info=error)

  async def trigger(self, events: Sequence[ChangeEvent] = ()) -> None:
    '''
    React to *events*.  Returns once the invocation this call started has
    settled (raising ``RoutineError`` if it ran out of retries), or right away
    when the call was coalesced into another one.
    '''
    cfg = self.trigger_config
    if self._torn_down or self._abort.cancelled:
      return
    if cfg.persistent and self._active is not None:
      logger.debug('persistent trigger %s is already running, ignoring change', cfg.name)
      return

    for event in events:
      self._pending.pop(event.path, None)
      self._pending[event.path] = event

    while self._active is not None:
      active = self._active
      if cfg.interruptible:
        if not active.token.cancelled:
          logger.warning('aborted task %s', active.id)
          active.token.cancel('interrupted')
      else:
        if active.queued:
          return
        active.queued = True
        logger.warning('waiting for %s task to complete', active.id)

      await active.settled()

      if self._torn_down or self._abort.cancelled:
        return
      if self._active is not None and not self._pending:
        # another caller already started a task with our changes
        return

    files = list(self._pending.values())
    self._pending.clear()
    first, self._first = self._first, False

    task = _ActiveTask(id=short_id(), token=self._abort.child())
    self._active = task
    task.future = asyncio.ensure_future(self._run(task, files, first))
    logger.debug('started task %s (trigger %s, %d file(s))', task.id, cfg.name, len(files))

    await asyncio.shield(task.future)

  async def _run(self, task: _ActiveTask, files: List[ChangeEvent], first: bool) -> None:
    try:
      await self._run_with_retry(task, files, first)
    finally:
      task.token.detach()
      if self._active is task:
        self._active = None
        logger.debug('completed task %s', task.id)

  async def _run_with_retry(self, task: _ActiveTask, files: List[ChangeEvent], first: bool) -> None:
    cfg = self.trigger_config
    policy = cfg.retry
    attempt = 0

    while not task.token.cancelled:
      ctx = ChangeContext(
        files=list(files),
        attempt=attempt,
        first=first,
        token=task.token,
        spawn=create_spawn(task.id, task.token),
        task_id=task.id,
        trigger=cfg.name,
      )
      try:
        await _call(cfg.on_change, ctx)
      except AbortError:
        logger.debug('task %s aborted', task.id)
        return
      except Exception as exc:
        if task.token.cancelled:
          logger.debug('task %s failed after abort: %s', task.id, exc)
          return
        if not cfg.persistent and attempt >= policy.max_retries:
          raise RoutineError(
            f'trigger {cfg.name} failed after {attempt + 1} attempt(s): {exc}',
            attempts=attempt + 1,
          ) from exc
        logger.warning('task %s attempt %d failed: %s', task.id, attempt, exc)
        logger.warning('retrying task %s...', task.id)
      else:
        if not cfg.persistent:
          return
        logger.info('persistent task %s exited, restarting', task.id)

      attempt += 1
      if await task.token.wait(policy.delay(attempt)):
        return

  async def wait_idle(self) -> None:
    while self._active is not None:
      await self._active.settled()

  # ─────────────────────────────────────────────────────────────────────────
  # Teardown
  # ─────────────────────────────────────────────────────────────────────────
  async def teardown(self) -> None:
    '''Stop the active task and run ``on_teardown`` once.  Idempotent.'''
    if self._teardown_task is None:
      self._torn_down = True
      self._teardown_task = asyncio.ensure_future(self._teardown())
    await asyncio.shield(self._teardown_task)

  async def _teardown(self) -> None:
    cfg = self.trigger_config
    active = self._active
    if active is not None:
      active.token.cancel('teardown')
      await self.wait_idle()

    if cfg.on_teardown is None:
      return
    task_id = short_id()
    try:
      await _call(cfg.on_teardown, TeardownContext(trigger=cfg.name, spawn=create_spawn(task_id)))
    except Exception:
      logger.exception('teardown of trigger %s failed', cfg.name)
