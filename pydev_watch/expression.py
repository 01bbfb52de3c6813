# expression.py
'''
Tiny boolean expression language deciding which files a trigger cares about.

Nodes
-----
    AllOf(children)                     every child true  (empty → True)
    AnyOf(children)                     some child true   (empty → False)
    Not(child)
    Match(pattern, case_sensitive, scope)
        glob against the basename or the whole relative path
    DirName(pattern, case_sensitive)
        *pattern* is a contiguous run of segments in the directory part

Watch scripts usually write the list form instead:

    ['allof', ['match', '*.py', 'basename'], ['not', ['dirname', 'build']]]

``parse_expression`` turns that into nodes, ``evaluate`` runs them.
'''

from __future__ import annotations

import ntpath
import os
import posixpath
from dataclasses import dataclass
from typing import Any, Tuple, Union

from wcmatch import glob

from .errors import InvalidArgument, InvalidExpression

_GLOB_FLAGS = glob.GLOBSTAR | glob.BRACE | glob.DOTGLOB | glob.FORCEUNIX

BASENAME = 'basename'
WHOLENAME = 'wholename'


# ─────────────────────────────────────────────────────────────────────────────
# Nodes
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class AllOf:
  children: Tuple['Expression', ...] = ()


@dataclass(frozen=True)
class AnyOf:
  children: Tuple['Expression', ...] = ()


@dataclass(frozen=True)
class Not:
  child: 'Expression'


@dataclass(frozen=True)
class Match:
  pattern: str
  case_sensitive: bool = True
  scope: str = BASENAME

  def __post_init__(self) -> None:
    if not isinstance(self.pattern, str) or not self.pattern:
      raise InvalidExpression(f'match pattern must be a non-empty string: {self.pattern!r}')
    if self.scope not in (BASENAME, WHOLENAME):
      raise InvalidExpression(f'unknown match scope: {self.scope!r}')


@dataclass(frozen=True)
class DirName:
  pattern: str
  case_sensitive: bool = True

  def __post_init__(self) -> None:
    if not isinstance(self.pattern, str) or not self.pattern:
      raise InvalidExpression(f'dirname pattern must be a non-empty string: {self.pattern!r}')
    if self.pattern.startswith('/') or self.pattern.endswith('/'):
      raise InvalidExpression(
        f'dirname pattern must not start or end with a path separator: {self.pattern!r}'
      )


Expression = Union[AllOf, AnyOf, Not, Match, DirName]


# ─────────────────────────────────────────────────────────────────────────────
# List form → nodes
# ─────────────────────────────────────────────────────────────────────────────
def parse_expression(raw: Any) -> Expression:
  '''
  Convert the list form (or an existing node) into an expression tree.

  ``['match', pattern]`` without a scope matches the basename.  Only an
  explicit ``'wholename'`` scope matches the whole relative path, and any
  other scope value is rejected rather than treated as ``'wholename'``.
  '''
  if isinstance(raw, (AllOf, AnyOf, Not, Match, DirName)):
    return raw
  if not isinstance(raw, (list, tuple)) or not raw or not isinstance(raw[0], str):
    raise InvalidExpression(f'expression must be a non-empty list starting with a tag: {raw!r}')

  tag, args = raw[0], list(raw[1:])

  if tag in ('allof', 'anyof'):
    children = tuple(parse_expression(a) for a in args)
    return AllOf(children) if tag == 'allof' else AnyOf(children)

  if tag == 'not':
    if len(args) != 1:
      raise InvalidExpression(f"'not' takes exactly one sub-expression: {raw!r}")
    return Not(parse_expression(args[0]))

  if tag in ('match', 'imatch'):
    if len(args) not in (1, 2):
      raise InvalidExpression(f"'{tag}' takes a pattern and an optional scope: {raw!r}")
    scope = args[1] if len(args) == 2 else BASENAME
    return Match(args[0], case_sensitive=(tag == 'match'), scope=scope)

  if tag in ('dirname', 'idirname'):
    if len(args) != 1:
      raise InvalidExpression(f"'{tag}' takes exactly one pattern: {raw!r}")
    return DirName(args[0], case_sensitive=(tag == 'dirname'))

  raise InvalidExpression(f'unknown expression tag: {tag!r}')


# ─────────────────────────────────────────────────────────────────────────────
# Evaluation
# ─────────────────────────────────────────────────────────────────────────────
def _match(node: Match, path: str) -> bool:
  subject = posixpath.basename(path) if node.scope == BASENAME else path
  pattern = node.pattern
  if not node.case_sensitive:
    subject, pattern = subject.lower(), pattern.lower()
  return glob.globmatch(subject, pattern, flags=_GLOB_FLAGS)


def _dirname(node: DirName, path: str) -> bool:
  directory = posixpath.dirname(path)
  if not directory:
    return False
  pattern = node.pattern
  if not node.case_sensitive:
    directory, pattern = directory.lower(), pattern.lower()
  return f'/{pattern}/' in f'/{directory}/'


def _evaluate(expression: Expression, path: str) -> bool:
  if isinstance(expression, AllOf):
    return all(_evaluate(e, path) for e in expression.children)
  if isinstance(expression, AnyOf):
    return any(_evaluate(e, path) for e in expression.children)
  if isinstance(expression, Not):
    return not _evaluate(expression.child, path)
  if isinstance(expression, Match):
    return _match(expression, path)
  if isinstance(expression, DirName):
    return _dirname(expression, path)
  raise InvalidExpression(f'unknown expression node: {expression!r}')


def evaluate(expression: Expression, relative_path: str) -> bool:
  '''
  Test *relative_path* (relative to the watched root) against *expression*.

  On Windows, drive paths are rejected and backslashes are normalised to
  forward slashes, so paths produced by ``os.path.relpath`` work unchanged.
  Elsewhere ``:`` and ``\\`` are ordinary file name characters.
  '''
  path = relative_path
  if os.name == 'nt':
    if ntpath.splitdrive(path)[0]:
      raise InvalidArgument(f'expected a path relative to the project root: {relative_path!r}')
    path = path.replace('\\', '/')
  if posixpath.isabs(path):
    raise InvalidArgument(f'expected a path relative to the project root: {relative_path!r}')
  return _evaluate(expression, path)
