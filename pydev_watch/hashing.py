# hashing.py
from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Optional, Union

_CHUNK = 1 << 16


def _sha1(path: Path) -> str:
  digest = hashlib.sha1()
  with open(path, 'rb') as fh:
    for chunk in iter(lambda: fh.read(_CHUNK), b''):
      digest.update(chunk)
  return digest.hexdigest()


async def hash_file(path: Union[str, Path]) -> Optional[str]:
  '''SHA-1 of the file contents, or None when the file can't be read.'''
  try:
    return await asyncio.to_thread(_sha1, Path(path))
  except OSError:
    return None
