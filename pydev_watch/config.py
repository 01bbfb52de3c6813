# config.py
'''
Watch configuration: triggers, retry policy, debounce window.

Watch scripts normally build everything through ``define_config``:

    config = define_config(
      project='.',
      triggers=[{
        'name': 'build',
        'expression': ['match', '*.py', 'basename'],
        'on_change': build,
        'retry': {'max_retries': 2},
      }],
    )

Every check here runs at construction time, so a bad configuration fails
before any file is watched.
'''

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .errors import InvalidArgument
from .expression import Expression, parse_expression

TRIGGER_NAME = re.compile(r'^[a-z0-9\-_]+$')


def short_id() -> str:
  return uuid.uuid4().hex[:8]


# ─────────────────────────────────────────────────────────────────────────────
# Retry / debounce
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class RetryPolicy:
  max_retries: int = 0
  min_delay: float = 1.0
  max_delay: float = 30.0
  factor: float = 2.0

  def __post_init__(self) -> None:
    if self.max_retries < 0:
      raise InvalidArgument(f'max_retries must be >= 0, got {self.max_retries}')
    if self.min_delay < 0 or self.max_delay < 0:
      raise InvalidArgument('retry delays must be >= 0')
    if self.factor <= 0:
      raise InvalidArgument(f'factor must be > 0, got {self.factor}')

  def delay(self, attempt: int) -> float:
    '''Backoff before retry number *attempt* (1-based).'''
    return min(attempt * self.factor * self.min_delay, self.max_delay)


@dataclass(frozen=True)
class Debounce:
  wait: float = 1.0

  def __post_init__(self) -> None:
    if self.wait <= 0:
      raise InvalidArgument(f'debounce wait must be > 0, got {self.wait}')


# ─────────────────────────────────────────────────────────────────────────────
# Trigger
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class Trigger:
  '''
  One watch rule: an expression selecting files and a routine to run.

  • interruptible : a new change cancels the running routine (else queue one)
  • persistent    : routine is long-running and restarted whenever it stops
  • initial_run   : run once at startup, before any change is seen
  '''
  name: str
  expression: Any
  on_change: Callable[..., Any]
  on_teardown: Optional[Callable[..., Any]] = None
  interruptible: bool = True
  persistent: bool = False
  initial_run: bool = True
  retry: RetryPolicy = field(default_factory=RetryPolicy)
  id: str = field(default_factory=short_id)

  def __post_init__(self) -> None:
    if not isinstance(self.name, str) or not TRIGGER_NAME.match(self.name):
      raise InvalidArgument(f'trigger name must match {TRIGGER_NAME.pattern}: {self.name!r}')
    if not callable(self.on_change):
      raise InvalidArgument(f'trigger {self.name}: on_change must be callable')
    if self.on_teardown is not None and not callable(self.on_teardown):
      raise InvalidArgument(f'trigger {self.name}: on_teardown must be callable')
    if self.persistent and not self.initial_run:
      raise InvalidArgument(f'trigger {self.name}: persistent triggers require initial_run')
    if isinstance(self.retry, dict):
      self.retry = RetryPolicy(**self.retry)
    self.expression: Expression = parse_expression(self.expression)


# ─────────────────────────────────────────────────────────────────────────────
# Whole configuration
# ─────────────────────────────────────────────────────────────────────────────
@dataclass
class WatchConfig:
  project: Path
  triggers: List[Trigger]
  debounce: Debounce = field(default_factory=Debounce)
  hash_files: bool = False
  backend: Optional[Callable[[Path], Any]] = None

  def __post_init__(self) -> None:
    self.project = Path(self.project).expanduser().resolve()
    if not self.project.is_dir():
      raise InvalidArgument(f'project must be an existing directory: {self.project}')
    if isinstance(self.debounce, dict):
      self.debounce = Debounce(**self.debounce)
    self.triggers = [_as_trigger(t) for t in self.triggers]
    seen: set[str] = set()
    for t in self.triggers:
      if t.name in seen:
        raise InvalidArgument(f'duplicate trigger name: {t.name}')
      seen.add(t.name)


def _as_trigger(t: Union[Trigger, Dict[str, Any]]) -> Trigger:
  if isinstance(t, Trigger):
    return t
  if isinstance(t, dict):
    try:
      return Trigger(**t)
    except TypeError as exc:
      raise InvalidArgument(f'bad trigger definition {t.get("name")!r}: {exc}') from exc
  raise InvalidArgument(f'trigger must be a Trigger or a dict, got {type(t).__name__}')


def define_config(
  *,
  project: Union[str, Path] = '.',
  triggers: Sequence[Union[Trigger, Dict[str, Any]]] = (),
  debounce: Union[Debounce, Dict[str, float], None] = None,
  hash_files: bool = False,
  backend: Optional[Callable[[Path], Any]] = None,
) -> WatchConfig:
  return WatchConfig(
    project=Path(project),
    triggers=list(triggers),
    debounce=debounce if debounce is not None else Debounce(),
    hash_files=hash_files,
    backend=backend,
  )
