"""
File entry points: write an object graph to a path, read it back as a handle.

    write(path, obj)               mapped WRITE region -> sink -> serialize
    read(path, cls)                whole-file snapshot -> deserialize -> handle
    read_mmap(path, cls)           mapped READ region  -> deserialize -> handle

Both sides of a round trip must use the same ``mode``. ``write`` overwrites an
existing file in place; there is no temp-file rename or fsync-before-rename,
so a crash mid-write can leave a partial file behind.
"""

import logging
import os
from typing import Type, TypeVar, Union

from zcopy_data_model.mode import Mode
from zcopy_exception_model.exception import DeserializeError
from zcopy_io.engine.deserializer import deserialize
from zcopy_io.engine.serializer import layout_for, serialize
from zcopy_io.engine.views import StructView
from zcopy_io.persistence.file_snapshot import load
from zcopy_io.persistence.growable_sink import GrowableSink
from zcopy_io.persistence.mapped_region import MappedRegion, Protection
from zcopy_io.persistence.memory_holder import MemoryHolder
from zcopy_io.wrapped import Wrapped

logger = logging.getLogger(__name__)

T = TypeVar("T")
PathLike = Union[str, os.PathLike]


def write(path: PathLike, obj, mode: Mode = Mode.DEFAULT) -> None:
    """
    Serialize ``obj`` into a newly created (or truncated) file at ``path``.

    A Wrapped handle or StructView is dereferenced first, so the pointee is
    written rather than the handle. The pointee is copied out before the file
    is opened because the target may be the very file the handle maps.

    Raises:
        OpenError: If the file cannot be created or mapped
        OutOfSpaceError: If the file cannot grow
        TypeError, ValueError: If ``obj`` cannot be encoded
    """
    if isinstance(obj, Wrapped):
        obj = obj.materialize()
    elif isinstance(obj, StructView):
        obj = obj.materialize()
    # reject unencodable types before the target is truncated
    layout_for(obj)

    with MappedRegion(path, Protection.WRITE) as region:
        written = serialize(GrowableSink(region), obj, mode)
    logger.info(f"Wrote {type(obj).__name__} to {path} ({written} bytes)")


def _deserialize(cls: Type[T], data, mode: Mode, path: PathLike):
    try:
        return deserialize(cls, data, mode)
    except DeserializeError as e:
        if e.path is None:
            e.path = str(path)
        logger.error(f"Rejected {path} as {cls.__name__}: {e}")
        raise


def read(path: PathLike, cls: Type[T], mode: Mode = Mode.DEFAULT) -> Wrapped[T]:
    """
    Load the whole file into memory and return a handle to its root ``cls``.

    The handle owns an independent copy of the bytes, so it stays valid if
    the file is later modified, moved or deleted.

    Raises:
        OpenError: If the file cannot be read
        DeserializeError: If the bytes are rejected (version, integrity, bounds)
    """
    data = load(path)
    pointer = _deserialize(cls, data, mode, path)
    logger.info(f"Read {cls.__name__} from {path} ({len(data)} bytes)")
    return Wrapped(MemoryHolder.from_buffer(data), pointer)


def read_mmap(path: PathLike, cls: Type[T], mode: Mode = Mode.DEFAULT) -> Wrapped[T]:
    """
    Map the file read-only and return a handle to its root ``cls``.

    Pages are faulted in lazily on access. The handle keeps the mapping
    alive; on POSIX systems an unlinked file stays readable through it, on
    other platforms the file may not be deletable while mapped.

    Raises:
        OpenError: If the file cannot be opened or mapped
        DeserializeError: If the bytes are rejected (version, integrity, bounds)
    """
    region = MappedRegion(path, Protection.READ)
    try:
        with region.view() as view:
            pointer = _deserialize(cls, view, mode, path)
        holder = MemoryHolder.from_region(region)
    except BaseException:
        region.close()
        raise
    logger.info(f"Mapped {cls.__name__} from {path} ({region.size} bytes)")
    return Wrapped(holder, pointer)


def deserialize_bytes(cls: Type[T], data, mode: Mode = Mode.DEFAULT) -> Wrapped[T]:
    """Validate an in-memory span and return a handle over it; mutable buffers are copied first."""
    holder = MemoryHolder.from_buffer(data)
    try:
        pointer = deserialize(cls, holder.buffer, mode)
    except BaseException:
        holder.release()
        raise
    return Wrapped(holder, pointer)
