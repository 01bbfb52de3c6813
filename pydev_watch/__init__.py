# pydev_watch/__init__.py
from importlib.metadata import version, PackageNotFoundError

try:
  __version__ = version('pydev-watch')
except PackageNotFoundError:      # development mode
  __version__ = '0.0.0.dev0'

from .cancel import CancelToken                                   # re-export
from .change_queue import ChangeEvent                             # re-export
from .config import Debounce, RetryPolicy, Trigger, WatchConfig, define_config
from .context import load_config                                  # re-export
from .errors import (
  AbortError, InvalidArgument, InvalidExpression, ProcessSignalError,
  RoutineError, SpawnError, WatchBackendError, WatchError,
)
from .expression import AllOf, AnyOf, DirName, Match, Not, evaluate, parse_expression
from .kill_tree import kill_process_tree                          # re-export
from .subscription import ChangeContext, Subscription, TeardownContext
from .watch import Watch, run, start_watch

__all__ = [
  'CancelToken', 'ChangeEvent',
  'Debounce', 'RetryPolicy', 'Trigger', 'WatchConfig', 'define_config',
  'load_config',
  'AbortError', 'InvalidArgument', 'InvalidExpression', 'ProcessSignalError',
  'RoutineError', 'SpawnError', 'WatchBackendError', 'WatchError',
  'AllOf', 'AnyOf', 'DirName', 'Match', 'Not', 'evaluate', 'parse_expression',
  'kill_process_tree',
  'ChangeContext', 'Subscription', 'TeardownContext',
  'Watch', 'run', 'start_watch',
]
