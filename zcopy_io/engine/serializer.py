import dataclasses
import logging
import numbers
import struct
from typing import Any, Dict, List, Optional, Union

import numpy as np

from zcopy_data_model.checksum_util import ChecksumFunc, checksum_u64
from zcopy_data_model.layout import FieldKind, FieldSpec, Layout, NULL_OFFSET
from zcopy_data_model.mode import Mode
from zcopy_io.config import get_settings
from zcopy_io.engine.wire_format import HeaderLayout, U64, RECORD_ALIGNMENT
from zcopy_io.persistence.growable_sink import BufferTarget, GrowableSink

logger = logging.getLogger(__name__)


class _GraphWriter:
    """
    Writes an object graph children-first, so every stored offset points
    before the record that holds it. Shared dataclass instances are written
    once; cycles are rejected.
    """

    def __init__(self, sink: GrowableSink):
        self._sink = sink
        self._written: Dict[int, int] = {}
        self._in_progress = set()
        # keeps memoized objects alive so their ids cannot be reused
        self._keepalive: List[Any] = []

    def write_struct(self, obj, layout: Layout) -> int:
        key = id(obj)
        if key in self._written:
            return self._written[key]
        if key in self._in_progress:
            raise ValueError(f"Cyclic reference through {layout.name} cannot be serialized")
        self._in_progress.add(key)

        values: List[Any] = []
        for spec in layout.fields:
            values.extend(self._slot_values(spec, getattr(obj, spec.name), layout.name))
        try:
            record = layout.record.pack(*values)
        except struct.error as e:
            raise ValueError(f"Cannot pack {layout.name}: {e}") from e

        offset = self._sink.append(record, alignment=RECORD_ALIGNMENT)
        self._in_progress.discard(key)
        self._written[key] = offset
        self._keepalive.append(obj)
        return offset

    def _slot_values(self, spec: FieldSpec, value, owner: str) -> tuple:
        kind = spec.kind
        if kind is FieldKind.INT:
            if not isinstance(value, numbers.Integral) or isinstance(value, (bool, np.bool_)):
                raise TypeError(f"{owner}.{spec.name} expects int, got {type(value).__name__}")
            return (int(value),)
        if kind is FieldKind.FLOAT:
            if not isinstance(value, numbers.Real) or isinstance(value, (bool, np.bool_)):
                raise TypeError(f"{owner}.{spec.name} expects float, got {type(value).__name__}")
            return (float(value),)
        if kind is FieldKind.BOOL:
            if not isinstance(value, (bool, np.bool_)):
                raise TypeError(f"{owner}.{spec.name} expects bool, got {type(value).__name__}")
            return (bool(value),)
        if kind is FieldKind.STR:
            if not isinstance(value, str):
                raise TypeError(f"{owner}.{spec.name} expects str, got {type(value).__name__}")
            data = value.encode('utf-8')
            return self._sink.append(data), len(data)
        if kind is FieldKind.BYTES:
            data = memoryview(value).cast('B')
            return self._sink.append(data), len(data)
        if kind is FieldKind.ARRAY:
            arr = np.ascontiguousarray(value, dtype=spec.dtype)
            if arr.ndim != 1:
                raise ValueError(f"{owner}.{spec.name} expects a 1-D array, got shape {arr.shape}")
            return self._sink.append(arr.tobytes(), alignment=spec.dtype.alignment), arr.size
        if kind is FieldKind.STRUCT:
            if value is None:
                if not spec.optional:
                    raise ValueError(f"{owner}.{spec.name} is not Optional and cannot be None")
                return (NULL_OFFSET,)
            if not isinstance(value, spec.target):
                raise TypeError(f"{owner}.{spec.name} expects {spec.target.__name__}, "
                                f"got {type(value).__name__}")
            return (self.write_struct(value, Layout.of(spec.target)),)
        if kind is FieldKind.LIST:
            return self._write_list(spec, list(value), owner)
        raise TypeError(f"Unhandled field kind {kind}")

    def _write_list(self, spec: FieldSpec, items: list, owner: str) -> tuple:
        element = spec.element
        values: List[Any] = []
        for item in items:
            values.extend(self._slot_values(element, item, f"{owner}.{spec.name}"))
        block = struct.Struct('<' + element.kind.fmt * len(items))
        try:
            data = block.pack(*values)
        except struct.error as e:
            raise ValueError(f"Cannot pack {owner}.{spec.name}: {e}") from e
        return self._sink.append(data, alignment=RECORD_ALIGNMENT), len(items)


def layout_for(obj) -> Layout:
    """Layout of a dataclass instance; raises TypeError or UnsupportedTypeError otherwise."""
    if not dataclasses.is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"Only dataclass instances can be serialized, got {type(obj).__name__}")
    return Layout.of(type(obj))


def serialize(sink: GrowableSink, obj, mode: Mode = Mode.DEFAULT,
              checksum_algorithm: Optional[Union[str, ChecksumFunc]] = None) -> int:
    """
    Encode ``obj`` into ``sink`` and return the number of bytes written.

    The header is reserved first, the object graph is appended, then the
    header slots are filled in. The span must be read back with the same
    ``mode`` and ``checksum_algorithm``.

    Raises:
        TypeError: If ``obj`` is not a dataclass instance or a field has the wrong type
        ValueError: If a value cannot be encoded (out-of-range int, cycle, ...)
        UnsupportedTypeError: If the schema has no binary layout
        OutOfSpaceError: If the sink cannot grow
    """
    mode = Mode(mode)
    layout = layout_for(obj)
    algorithm = checksum_algorithm or get_settings().checksum_algorithm
    header = HeaderLayout.for_mode(mode)

    base = sink.append(b"\x00" * header.size, alignment=RECORD_ALIGNMENT)
    root = _GraphWriter(sink).write_struct(obj, layout)

    sink.write_at(base + header.root_pos, U64.pack(root))
    if header.has_version:
        sink.write_at(base + header.version_pos, U64.pack(layout.type_hash(algorithm)))
    if header.has_checksum:
        covered_from = base + header.checksum_pos + U64.size
        with sink.view(covered_from) as covered:
            checksum = checksum_u64(covered, algorithm)
        sink.write_at(base + header.checksum_pos, U64.pack(checksum))

    written = sink.size - base
    logger.debug(f"Serialized {layout.name} ({written} bytes, mode={mode!r})")
    return written


def serialize_to_bytes(obj, mode: Mode = Mode.DEFAULT,
                       checksum_algorithm: Optional[Union[str, ChecksumFunc]] = None) -> bytes:
    """Serialize ``obj`` into a new in-memory buffer."""
    target = BufferTarget()
    serialize(GrowableSink(target), obj, mode, checksum_algorithm)
    return target.getvalue()
