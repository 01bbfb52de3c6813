# errors.py
'''
Exception hierarchy shared by every pydev-watch module.

Configuration problems (bad expressions, bad trigger options) surface as
``InvalidExpression`` / ``InvalidArgument`` before any watching begins.
Everything else is raised while the watch is running.
'''

from __future__ import annotations


class WatchError(Exception):
  '''Base class for all pydev-watch errors.'''


class InvalidExpression(WatchError, ValueError):
  '''Malformed expression tree (unknown tag, bad arity, bad dirname pattern).'''


class InvalidArgument(WatchError, ValueError):
  '''Caller passed something unusable (absolute path to matcher, bad trigger).'''


class AbortError(WatchError):
  '''A routine observed cancellation.  Never retried, never a failure.'''


class RoutineError(WatchError):
  '''User routine kept failing after the retry policy was exhausted.'''

  def __init__(self, message: str, attempts: int = 1) -> None:
    super().__init__(message)
    self.attempts = attempts


class SpawnError(RoutineError):
  '''A spawned command exited with a non-zero status.'''

  def __init__(self, exit_code: int, stdout: str = '', stderr: str = '') -> None:
    super().__init__(f'Program exited with code {exit_code}.')
    self.exit_code = exit_code
    self.stdout = stdout
    self.stderr = stderr


class ProcessSignalError(WatchError):
  '''Signalling a process failed for a reason other than "no such process".'''

  def __init__(self, pid: int, message: str) -> None:
    super().__init__(f'could not signal process {pid}: {message}')
    self.pid = pid


class WatchBackendError(WatchError):
  '''The file watching backend failed.'''
