import logging
import os
from pathlib import Path
from typing import Union

from zcopy_exception_model.exception import OpenError

logger = logging.getLogger(__name__)


def load(path: Union[str, os.PathLike]) -> bytes:
    """
    Read the entire file into one heap-owned buffer.

    The returned bytes are an immutable copy of the file at call time and stay
    valid after the file is modified, moved or deleted.

    Raises:
        OpenError: If the path cannot be opened or read
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise OpenError("Cannot read file", path=str(path), mode="read", cause=e) from e
    logger.debug(f"Loaded snapshot of {path} ({len(data)} bytes)")
    return data
