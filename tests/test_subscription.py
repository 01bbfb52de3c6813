# test_subscription.py
'''
Tests for subscription.Subscription: interruption, queuing, retries,
persistent restarts and teardown.

Requirements
------------
* Two-space indent, single quotes
* Uses pytest + pytest-asyncio; routines are plain async functions
'''

from __future__ import annotations

import asyncio
from typing import List

import pytest

from pydev_watch.cancel import CancelToken
from pydev_watch.change_queue import ChangeEvent
from pydev_watch.config import RetryPolicy, Trigger
from pydev_watch.errors import AbortError, InvalidArgument, RoutineError
from pydev_watch.subscription import (
  AWAITING_SLOT, IDLE, INTERRUPTING, RUNNING, TORN_DOWN, ChangeContext, Subscription,
)

FAST = RetryPolicy(max_retries=0, min_delay=0.001, max_delay=0.005)


# ─────────────────────────────────────────────────────────────────────────────
# Utility
# ─────────────────────────────────────────────────────────────────────────────
def _trigger(on_change, **kw) -> Trigger:
  kw.setdefault('retry', FAST)
  return Trigger(name='test', expression=['match', '*'], on_change=on_change, **kw)


async def _until(predicate, timeout: float = 2.0) -> None:
  loop = asyncio.get_running_loop()
  deadline = loop.time() + timeout
  while not predicate():
    if loop.time() > deadline:
      raise AssertionError('condition not met in time')
    await asyncio.sleep(0.005)


class _Blocking:
  '''Routine that records its calls and blocks until released.'''

  def __init__(self, honour_cancel: bool = False) -> None:
    self.calls: List[ChangeContext] = []
    self.release = asyncio.Event()
    self.honour_cancel = honour_cancel

  async def __call__(self, ctx: ChangeContext) -> None:
    self.calls.append(ctx)
    if self.honour_cancel:
      await ctx.token.wait()
      return
    await self.release.wait()


def _ev(name: str) -> ChangeEvent:
  return ChangeEvent(f'/project/{name}')


# ─────────────────────────────────────────────────────────────────────────────
# 1. Basic invocation
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_invokes_routine_with_context():
  seen: List[ChangeContext] = []

  async def on_change(ctx):
    seen.append(ctx)

  sub = Subscription(_trigger(on_change))
  await sub.trigger([_ev('a'), _ev('b'), _ev('a')])
  await sub.trigger([])

  assert [e.path for e in seen[0].files] == ['/project/b', '/project/a']
  assert seen[0].attempt == 0
  assert seen[0].first is True
  assert seen[1].first is False
  assert seen[1].files == []
  assert seen[0].task_id != seen[1].task_id
  assert sub.state == IDLE


@pytest.mark.asyncio
async def test_sync_routines_are_supported():
  calls = []
  sub = Subscription(_trigger(lambda ctx: calls.append(ctx.attempt)))
  await sub.trigger([])
  assert calls == [0]


# ─────────────────────────────────────────────────────────────────────────────
# 2. Non-interruptible: one follow-up at most
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_blocking_trigger_coalesces_follow_ups():
  routine = _Blocking()
  sub = Subscription(_trigger(routine, interruptible=False))

  first = sub.schedule([_ev('a')])
  await _until(lambda: len(routine.calls) == 1)
  assert sub.state == RUNNING

  extra = [sub.schedule([_ev(n)]) for n in ('b', 'c', 'd', 'c')]
  await _until(lambda: sub.state == AWAITING_SLOT)
  await asyncio.sleep(0.02)
  assert len(routine.calls) == 1

  routine.release.set()
  await asyncio.gather(first, *extra)
  await sub.wait_idle()

  assert len(routine.calls) == 2
  assert sorted(e.path for e in routine.calls[1].files) == ['/project/b', '/project/c', '/project/d']
  assert routine.calls[0].token.cancelled is False


# ─────────────────────────────────────────────────────────────────────────────
# 3. Interruptible: cancel and restart
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_interruptible_trigger_cancels_running_task():
  routine = _Blocking(honour_cancel=True)
  sub = Subscription(_trigger(routine, interruptible=True))

  sub.schedule([_ev('a')])
  await _until(lambda: len(routine.calls) == 1)

  sub.schedule([_ev('b')])
  await _until(lambda: len(routine.calls) == 2)

  assert routine.calls[0].token.cancelled is True
  assert routine.calls[1].token.cancelled is False
  assert [e.path for e in routine.calls[1].files] == ['/project/b']

  await sub.teardown()


@pytest.mark.asyncio
async def test_interruption_keeps_changes_accumulated_meanwhile():
  stop_slowly = asyncio.Event()
  calls: List[ChangeContext] = []

  async def on_change(ctx):
    calls.append(ctx)
    if len(calls) == 1:
      await ctx.token.wait()
      await stop_slowly.wait()

  sub = Subscription(_trigger(on_change, interruptible=True))
  sub.schedule([_ev('a')])
  await _until(lambda: len(calls) == 1)

  sub.schedule([_ev('b')])
  await _until(lambda: sub.state == INTERRUPTING)
  sub.schedule([_ev('c')])
  sub.schedule([_ev('b')])
  await asyncio.sleep(0.02)
  assert len(calls) == 1, 'new task started before the old one stopped'

  stop_slowly.set()
  await _until(lambda: len(calls) == 2)
  await sub.wait_idle()

  assert len(calls) == 2
  assert sorted(e.path for e in calls[1].files) == ['/project/b', '/project/c']


# ─────────────────────────────────────────────────────────────────────────────
# 4. Retry policy
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_retries_until_success():
  attempts: List[int] = []

  async def on_change(ctx):
    attempts.append(ctx.attempt)
    if len(attempts) <= 2:
      raise RuntimeError('flaky')

  sub = Subscription(_trigger(on_change, retry=RetryPolicy(max_retries=2, min_delay=0.001)))
  await sub.trigger([])

  assert attempts == [0, 1, 2]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_routine_error():
  attempts: List[int] = []

  async def on_change(ctx):
    attempts.append(ctx.attempt)
    raise RuntimeError('broken')

  sub = Subscription(_trigger(on_change, retry=RetryPolicy(max_retries=2, min_delay=0.001)))
  with pytest.raises(RoutineError) as info:
    await sub.trigger([])

  assert len(attempts) == 3
  assert info.value.attempts == 3
  assert isinstance(info.value.__cause__, RuntimeError)
  assert sub.state == IDLE


@pytest.mark.asyncio
async def test_no_retries_by_default():
  calls = []

  async def on_change(ctx):
    calls.append(ctx)
    raise RuntimeError('boom')

  sub = Subscription(_trigger(on_change, retry=RetryPolicy()))
  with pytest.raises(RoutineError):
    await sub.trigger([])
  assert len(calls) == 1


@pytest.mark.asyncio
async def test_abort_error_is_not_retried_or_raised():
  calls = []

  async def on_change(ctx):
    calls.append(ctx)
    raise AbortError('stopped')

  sub = Subscription(_trigger(on_change, retry=RetryPolicy(max_retries=3, min_delay=0.001)))
  await sub.trigger([])
  assert len(calls) == 1


@pytest.mark.asyncio
async def test_failure_after_cancellation_is_a_clean_stop():
  calls = []

  async def on_change(ctx):
    calls.append(ctx)
    await ctx.token.wait()
    raise RuntimeError('interrupted mid-way')

  sub = Subscription(_trigger(on_change, retry=RetryPolicy(max_retries=3, min_delay=0.001)))
  first = sub.schedule([])
  await _until(lambda: len(calls) == 1)
  await sub.teardown()
  await first

  assert len(calls) == 1
  assert first.exception() is None


def test_backoff_delay():
  policy = RetryPolicy(max_retries=5, min_delay=1.0, max_delay=5.0, factor=2.0)
  assert [policy.delay(a) for a in (1, 2, 3)] == [2.0, 4.0, 5.0]


# ─────────────────────────────────────────────────────────────────────────────
# 5. Persistent triggers
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_persistent_routine_is_restarted_until_teardown():
  calls: List[int] = []

  async def on_change(ctx):
    calls.append(ctx.attempt)

  sub = Subscription(_trigger(on_change, persistent=True))
  sub.schedule([])
  await _until(lambda: len(calls) >= 5)

  await sub.teardown()
  count = len(calls)
  await asyncio.sleep(0.05)

  assert len(calls) == count
  assert calls[:3] == [0, 1, 2]
  assert sub.state == TORN_DOWN


@pytest.mark.asyncio
async def test_persistent_routine_failures_are_always_retried():
  calls = []

  async def on_change(ctx):
    calls.append(ctx)
    raise RuntimeError('crashed')

  sub = Subscription(_trigger(on_change, persistent=True, retry=RetryPolicy(max_retries=0, min_delay=0.001, max_delay=0.002)))
  task = sub.schedule([])
  await _until(lambda: len(calls) >= 4)
  await sub.teardown()
  await task

  assert task.exception() is None


@pytest.mark.asyncio
async def test_persistent_trigger_ignores_changes_while_running():
  routine = _Blocking(honour_cancel=True)
  sub = Subscription(_trigger(routine, persistent=True))

  sub.schedule([])
  await _until(lambda: len(routine.calls) == 1)
  await sub.trigger([_ev('a')])
  await asyncio.sleep(0.02)

  assert len(routine.calls) == 1
  assert routine.calls[0].token.cancelled is False
  await sub.teardown()


def test_persistent_requires_initial_run():
  with pytest.raises(InvalidArgument):
    _trigger(lambda ctx: None, persistent=True, initial_run=False)


# ─────────────────────────────────────────────────────────────────────────────
# 6. Teardown
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_teardown_is_idempotent():
  torn: List[str] = []

  async def on_teardown(ctx):
    await asyncio.sleep(0.01)
    torn.append(ctx.trigger)

  sub = Subscription(_trigger(lambda ctx: None, on_teardown=on_teardown))
  await asyncio.gather(sub.teardown(), sub.teardown())
  await sub.teardown()

  assert torn == ['test']


@pytest.mark.asyncio
async def test_teardown_errors_are_swallowed(caplog):
  async def on_teardown(ctx):
    raise RuntimeError('cleanup failed')

  sub = Subscription(_trigger(lambda ctx: None, on_teardown=on_teardown))
  await sub.teardown()

  assert 'teardown of trigger test failed' in caplog.text


@pytest.mark.asyncio
async def test_teardown_cancels_active_task_first():
  order: List[str] = []
  routine = _Blocking(honour_cancel=True)

  async def on_change(ctx):
    await routine(ctx)
    order.append('stopped')

  def on_teardown(ctx):
    order.append('teardown')

  sub = Subscription(_trigger(on_change, on_teardown=on_teardown))
  sub.schedule([])
  await _until(lambda: len(routine.calls) == 1)
  await sub.teardown()

  assert order == ['stopped', 'teardown']


@pytest.mark.asyncio
async def test_no_invocations_after_teardown():
  calls = []
  sub = Subscription(_trigger(lambda ctx: calls.append(ctx)))
  await sub.teardown()
  await sub.trigger([_ev('a')])
  assert calls == []


# ─────────────────────────────────────────────────────────────────────────────
# 7. Global abort
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_global_abort_cancels_only_its_subscriptions():
  abort = CancelToken()
  a_routine = _Blocking(honour_cancel=True)
  b_routine = _Blocking(honour_cancel=True)
  a = Subscription(_trigger(a_routine), abort)
  b = Subscription(_trigger(b_routine))

  a.schedule([])
  b.schedule([])
  await _until(lambda: a_routine.calls and b_routine.calls)

  abort.cancel()
  await a.wait_idle()

  assert a_routine.calls[0].token.cancelled is True
  assert b_routine.calls[0].token.cancelled is False
  await b.teardown()
