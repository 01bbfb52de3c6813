# context.py
'''
Load a watch script and pull its configuration out.

Public call
-----------
    load_config(path) -> WatchConfig
        • path : watch script, usually ``watch.py`` next to the project

The script runs in a brand-new globals dict.  It is expected to bind a
``WatchConfig`` (normally through ``define_config``) to ``config``; if it
doesn't, the single ``WatchConfig`` among its globals is used.
'''

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Union

from .config import WatchConfig
from .errors import InvalidArgument

SCRIPT_NAME = '__pydev_watch__'


# ─────────────────────────────────────────────────────────────────────────────
# Execution helpers
# ─────────────────────────────────────────────────────────────────────────────
def _exec(src: str, g: Dict[str, object]) -> None:
  '''Plain exec with caller-supplied globals; no I/O redirection.'''
  code = compile(src, g.get('__file__', '<string>'), 'exec')
  exec(code, g, g)


def _execute_fresh(path: Path) -> Dict[str, object]:
  g: Dict[str, object] = {'__name__': SCRIPT_NAME, '__file__': str(path)}
  _exec(path.read_text(encoding='utf-8'), g)
  return g


def _find_config(g: Dict[str, object], path: Path) -> WatchConfig:
  named = g.get('config')
  if isinstance(named, WatchConfig):
    return named
  found: List[WatchConfig] = [v for v in g.values() if isinstance(v, WatchConfig)]
  if len(found) == 1:
    return found[0]
  if not found:
    raise InvalidArgument(f'{path} does not define a WatchConfig (use define_config)')
  raise InvalidArgument(f'{path} defines {len(found)} WatchConfig objects; bind one to "config"')


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────
def load_config(path: Union[str, Path]) -> WatchConfig:
  script = Path(path).resolve()
  if not script.is_file():
    raise InvalidArgument(f'{script} not found')
  return _find_config(_execute_fresh(script), script)
