"""Lazy, zero-copy views over validated spans.

A view stores only its holder and a record offset. Every access goes back to
``holder.buffer``, so once the holder is released the view raises
HandleReleasedError instead of reading freed memory.
"""

import dataclasses
import struct
from collections.abc import Sequence

import numpy as np

from zcopy_data_model.layout import FieldKind, FieldSpec, Layout, NULL_OFFSET
from zcopy_exception_model.exception import DeserializeError

_SCALARS = {
    FieldKind.INT: struct.Struct('<q'),
    FieldKind.FLOAT: struct.Struct('<d'),
    FieldKind.BOOL: struct.Struct('<?'),
}
_PAIR = struct.Struct('<QQ')
_U64 = struct.Struct('<Q')


def read_slot(spec: FieldSpec, holder, pos: int):
    """Decode the slot described by ``spec`` at absolute position ``pos``."""
    buf = holder.buffer
    kind = spec.kind
    if kind in _SCALARS:
        return _SCALARS[kind].unpack_from(buf, pos)[0]
    if kind is FieldKind.STR:
        offset, length = _PAIR.unpack_from(buf, pos)
        try:
            return str(buf[offset:offset + length], 'utf-8')
        except UnicodeDecodeError as e:
            raise DeserializeError(f"Field {spec.name} is not valid UTF-8", offset=offset, cause=e) from e
    if kind is FieldKind.BYTES:
        offset, length = _PAIR.unpack_from(buf, pos)
        return buf[offset:offset + length]
    if kind is FieldKind.ARRAY:
        offset, count = _PAIR.unpack_from(buf, pos)
        return np.frombuffer(buf[offset:offset + count * spec.dtype.itemsize], dtype=spec.dtype)
    if kind is FieldKind.STRUCT:
        offset = _U64.unpack_from(buf, pos)[0]
        if offset == NULL_OFFSET:
            return None
        return StructView(Layout.of(spec.target), holder, offset)
    if kind is FieldKind.LIST:
        offset, count = _PAIR.unpack_from(buf, pos)
        return ListView(spec.element, holder, offset, count)
    raise TypeError(f"Unhandled field kind {kind}")


def values_equal(left, right) -> bool:
    """Field-wise equality that understands arrays, views and buffers."""
    if isinstance(left, np.ndarray) or isinstance(right, np.ndarray):
        if left is None or right is None:
            return False
        return np.array_equal(np.asarray(left), np.asarray(right))
    if isinstance(left, (StructView, ListView)):
        return left == right
    if isinstance(right, (StructView, ListView)):
        return right == left
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    return left == right


def materialize(value):
    """Deep-copy a view value into ordinary Python objects."""
    if isinstance(value, StructView):
        return value.materialize()
    if isinstance(value, ListView):
        return [materialize(v) for v in value]
    if isinstance(value, memoryview):
        return bytes(value)
    if isinstance(value, np.ndarray):
        return value.copy()
    return value


class StructView:
    """
    Read-only view of one record.

    Attribute access decodes the field in place: scalars are unpacked,
    ``str`` is decoded, ``bytes`` is a read-only memoryview, arrays are
    read-only numpy views, nested records are StructViews and lists are
    ListViews.
    """
    __slots__ = ("_layout", "_holder", "_offset")

    def __init__(self, layout: Layout, holder, offset: int):
        object.__setattr__(self, "_layout", layout)
        object.__setattr__(self, "_holder", holder)
        object.__setattr__(self, "_offset", offset)

    @property
    def schema(self) -> type:
        return self._layout.cls

    @property
    def offset(self) -> int:
        return self._offset

    def __getattr__(self, name):
        layout = object.__getattribute__(self, "_layout")
        if not layout.has_field(name):
            raise AttributeError(f"{layout.name} has no field {name!r}")
        spec = layout.field(name)
        return read_slot(spec, self._holder, self._offset + spec.offset)

    def __getitem__(self, name: str):
        # fields shadowed by view attributes (e.g. one called "offset") stay reachable
        if not self._layout.has_field(name):
            raise KeyError(name)
        spec = self._layout.field(name)
        return read_slot(spec, self._holder, self._offset + spec.offset)

    def __setattr__(self, name, value):
        raise AttributeError(f"{self._layout.name} view is read-only")

    def __dir__(self):
        return list(super().__dir__()) + [f.name for f in self._layout.fields]

    def fields(self) -> dict:
        return {f.name: getattr(self, f.name) for f in self._layout.fields}

    def materialize(self):
        """Build an instance of the schema dataclass with copies of every field."""
        cls = self._layout.cls
        values = {name: materialize(value) for name, value in self.fields().items()}
        init_names = {f.name for f in dataclasses.fields(cls) if f.init}
        obj = cls(**{k: v for k, v in values.items() if k in init_names})
        for name, value in values.items():
            if name not in init_names:
                object.__setattr__(obj, name, value)
        return obj

    def __eq__(self, other):
        if isinstance(other, StructView):
            if other._layout is not self._layout:
                return False
        elif not isinstance(other, self._layout.cls):
            return NotImplemented
        return all(values_equal(getattr(self, f.name), getattr(other, f.name)) for f in self._layout.fields)

    __hash__ = None

    def __repr__(self):
        body = ', '.join(f"{name}={value!r}" for name, value in self.fields().items())
        return f"{self._layout.name}View({body})"


class ListView(Sequence):
    """Read-only sequence over a contiguous block of list slots."""

    __slots__ = ("_element", "_holder", "_offset", "_count")

    def __init__(self, element: FieldSpec, holder, offset: int, count: int):
        self._element = element
        self._holder = holder
        self._offset = offset
        self._count = count

    def __len__(self):
        return self._count

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(self._count))]
        if index < 0:
            index += self._count
        if not 0 <= index < self._count:
            raise IndexError("list view index out of range")
        return read_slot(self._element, self._holder, self._offset + index * self._element.size)

    def __eq__(self, other):
        if isinstance(other, (ListView, list, tuple)):
            return len(self) == len(other) and all(values_equal(a, b) for a, b in zip(self, other))
        return NotImplemented

    __hash__ = None

    def __repr__(self):
        return f"ListView({list(self)!r})"
