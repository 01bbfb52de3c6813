# __main__.py
import asyncio
import logging
import os
import sys

from .context import load_config
from .dev_argparse import parse_argv
from .dev_watchdog import POLLING_ENV
from .watch import run

_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def main() -> None:
  args = parse_argv()
  logging.basicConfig(
    level=_LEVELS.get(args.verbose, logging.DEBUG),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
  )
  if args.polling:
    os.environ[POLLING_ENV] = '1'

  script = args.source.resolve()
  if not script.is_file():
    print(f'{script} not found', file=sys.stderr)
    sys.exit(1)

  cfg = load_config(script)
  try:
    asyncio.run(run(cfg))
  except KeyboardInterrupt:
    pass


if __name__ == '__main__':
  main()
