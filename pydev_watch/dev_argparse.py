import argparse
from pathlib import Path
from typing import List, Optional


def parse_argv(argv: Optional[List[str]] = None) -> argparse.Namespace:
  '''
  Parse command-line arguments for *pydev-watch*.

  Parameters
  ----------
  argv
    A custom argument list (mainly for testing).  When None the
    function uses ``sys.argv[1:]`` automatically.

  Returns
  -------
  argparse.Namespace
    • source  : Path to the watch script (default: watch.py)
    • polling : Bool flag - force the polling backend
    • verbose : Verbosity count (-v, -vv, …)
  '''
  parser = argparse.ArgumentParser(
      prog='pydev-watch',
      description='Run routines whenever matching files change.',
  )

  # positional: watch script
  parser.add_argument(
      'source',
      nargs='?',
      default=Path('watch.py'),
      help='Script with pydev-watch instructions (default: watch.py).',
      type=Path,
  )

  # backend
  parser.add_argument(
      '--polling',
      action='store_true',
      help='Use the polling watcher (network drives, WSL2 /mnt paths).',
  )

  # verbosity
  parser.add_argument(
      '--verbose',
      '-v',
      action='count',
      default=0,
      help='Increase logging verbosity; repeat for more detail.',
  )

  try:
    import argcomplete
    argcomplete.autocomplete(parser)
  except ImportError:
    pass
  return parser.parse_args(argv)
