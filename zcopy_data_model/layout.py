"""Binary record layouts derived from dataclass schemas.

Every dataclass maps to one fixed-size little-endian record. Scalars are
stored inline; everything of variable size is stored elsewhere in the span
and referenced from the record by absolute offset:

    int      -> q   (int64)
    float    -> d   (float64)
    bool     -> ?   (1 byte)
    str      -> QQ  (offset, byte length of UTF-8 text)
    bytes    -> QQ  (offset, byte length)
    ndarray  -> QQ  (offset, element count; dtype fixed by the schema)
    struct   -> Q   (offset of the child record, NULL_OFFSET for None)
    List[T]  -> QQ  (offset, count of contiguous T slots)
"""

import dataclasses
import struct
import threading
import types
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union, get_args, get_origin, get_type_hints

import numpy as np

from zcopy_data_model.checksum_util import ChecksumFunc, checksum_u64
from zcopy_exception_model.exception import UnsupportedTypeError

NULL_OFFSET: int = 0xFFFFFFFFFFFFFFFF
DEFAULT_ARRAY_DTYPE = np.dtype('<f4')


class FieldKind(Enum):
    INT = 'int'
    FLOAT = 'float'
    BOOL = 'bool'
    STR = 'str'
    BYTES = 'bytes'
    ARRAY = 'array'
    STRUCT = 'struct'
    LIST = 'list'

    @property
    def fmt(self) -> str:
        return _SLOT_FORMATS[self]

    @property
    def slot_size(self) -> int:
        return struct.calcsize('<' + self.fmt)


_SLOT_FORMATS: Dict[FieldKind, str] = {
    FieldKind.INT: 'q',
    FieldKind.FLOAT: 'd',
    FieldKind.BOOL: '?',
    FieldKind.STR: 'QQ',
    FieldKind.BYTES: 'QQ',
    FieldKind.ARRAY: 'QQ',
    FieldKind.STRUCT: 'Q',
    FieldKind.LIST: 'QQ',
}


@dataclass(frozen=True)
class FieldSpec:
    """One slot of a record.

    Attributes:
        name: Dataclass field name (or ``"[]"`` for list elements).
        kind: Slot kind.
        offset: Byte offset of the slot inside its record.
        target: Dataclass referenced by STRUCT slots.
        dtype: Element dtype of ARRAY slots.
        element: Element spec of LIST slots (its ``offset`` is 0).
        optional: STRUCT slot may hold ``None``.
    """
    name: str
    kind: FieldKind
    offset: int = 0
    target: Optional[type] = None
    dtype: Optional[np.dtype] = None
    element: Optional["FieldSpec"] = None
    optional: bool = False

    @property
    def size(self) -> int:
        return self.kind.slot_size

    def describe(self, seen: set) -> str:
        if self.kind is FieldKind.STRUCT:
            inner = Layout.of(self.target).describe(seen)
            return f"?{inner}" if self.optional else inner
        if self.kind is FieldKind.ARRAY:
            return f"array<{self.dtype.str}>"
        if self.kind is FieldKind.LIST:
            return f"list<{self.element.describe(seen)}>"
        return self.kind.value


def _is_optional(annotation) -> Tuple[bool, Any]:
    origin = get_origin(annotation)
    if origin is Union or (hasattr(types, 'UnionType') and origin is types.UnionType):
        args = [a for a in get_args(annotation) if a is not type(None)]
        if len(args) == 1 and len(get_args(annotation)) == 2:
            return True, args[0]
        raise UnsupportedTypeError("Only Optional[<dataclass>] unions are supported", type_name=repr(annotation))
    return False, annotation


def _array_dtype(annotation, metadata) -> np.dtype:
    dtype = metadata.get('dtype') if metadata else None
    if dtype is None:
        # numpy.typing.NDArray[np.float64] -> ndarray[Any, dtype[float64]]
        args = get_args(annotation)
        if len(args) == 2 and get_args(args[1]):
            dtype = get_args(args[1])[0]
    dtype = DEFAULT_ARRAY_DTYPE if dtype is None else np.dtype(dtype)
    if dtype.hasobject or dtype.itemsize == 0:
        raise UnsupportedTypeError("Arrays need a fixed-size, non-object dtype", type_name=str(dtype))
    return dtype.newbyteorder('<') if dtype.byteorder not in ('|', '<') else dtype


def _classify(name: str, annotation, metadata=None, allow_list: bool = True) -> FieldSpec:
    optional, annotation = _is_optional(annotation)
    origin = get_origin(annotation)

    if optional and not dataclasses.is_dataclass(annotation):
        raise UnsupportedTypeError("Only dataclass fields may be Optional", type_name=repr(annotation),
                                   field_name=name)

    if origin in (list, List):
        if not allow_list:
            raise UnsupportedTypeError("Nested lists are not supported", type_name=repr(annotation),
                                       field_name=name)
        args = get_args(annotation)
        if len(args) != 1:
            raise UnsupportedTypeError("List fields need an element type", field_name=name)
        element = _classify("[]", args[0], metadata, allow_list=False)
        return FieldSpec(name=name, kind=FieldKind.LIST, element=element)

    if annotation is np.ndarray or origin is np.ndarray:
        return FieldSpec(name=name, kind=FieldKind.ARRAY, dtype=_array_dtype(annotation, metadata))
    # bool is a subclass of int, so it has to be checked first
    if annotation is bool:
        return FieldSpec(name=name, kind=FieldKind.BOOL)
    if annotation is int:
        return FieldSpec(name=name, kind=FieldKind.INT)
    if annotation is float:
        return FieldSpec(name=name, kind=FieldKind.FLOAT)
    if annotation is str:
        return FieldSpec(name=name, kind=FieldKind.STR)
    if annotation is bytes:
        return FieldSpec(name=name, kind=FieldKind.BYTES)
    if isinstance(annotation, type) and dataclasses.is_dataclass(annotation):
        return FieldSpec(name=name, kind=FieldKind.STRUCT, target=annotation, optional=optional)

    raise UnsupportedTypeError("Field annotation has no binary layout",
                               type_name=getattr(annotation, '__name__', repr(annotation)), field_name=name)


class Layout:
    """
    Fixed-size record layout of one dataclass schema.

    Layouts are computed once per class and cached. Computing a layout never
    recurses into referenced dataclasses, so self-referential schemas work.
    """
    _cache: Dict[type, "Layout"] = {}
    _cache_lock = threading.Lock()

    def __init__(self, cls: type):
        if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
            raise UnsupportedTypeError("Schemas must be dataclass types",
                                       type_name=getattr(cls, '__name__', repr(cls)))
        self.cls = cls
        try:
            hints = get_type_hints(cls)
        except NameError as e:
            raise UnsupportedTypeError(f"Cannot resolve annotations: {e}", type_name=cls.__qualname__)

        fields: List[FieldSpec] = []
        offset = 0
        for f in dataclasses.fields(cls):
            spec = _classify(f.name, hints[f.name], f.metadata)
            fields.append(dataclasses.replace(spec, offset=offset))
            offset += spec.size
        self.fields: Tuple[FieldSpec, ...] = tuple(fields)
        self.record = struct.Struct('<' + ''.join(f.kind.fmt for f in self.fields))
        self.size: int = self.record.size
        self._by_name = {f.name: f for f in self.fields}
        self._hashes: Dict[Any, int] = {}

    @classmethod
    def of(cls, schema: type) -> "Layout":
        layout = cls._cache.get(schema)
        if layout is None:
            with cls._cache_lock:
                layout = cls._cache.get(schema)
                if layout is None:
                    layout = cls(schema)
                    cls._cache[schema] = layout
        return layout

    @property
    def name(self) -> str:
        return self.cls.__qualname__

    def field(self, name: str) -> FieldSpec:
        return self._by_name[name]

    def has_field(self, name: str) -> bool:
        return name in self._by_name

    def describe(self, seen: Optional[set] = None) -> str:
        """
        Canonical text form of the schema, used as the static version input.

        A schema already on the current path is written as ``Name@`` so that
        recursive schemas terminate.
        """
        seen = set() if seen is None else seen
        if self.cls in seen:
            return f"{self.name}@"
        seen = seen | {self.cls}
        body = ','.join(f"{f.name}:{f.describe(seen)}" for f in self.fields)
        return f"{self.name}{{{body}}}"

    def type_hash(self, algorithm: Union[str, ChecksumFunc] = 'sha256') -> int:
        """64-bit static version of this schema."""
        value = self._hashes.get(algorithm)
        if value is None:
            value = checksum_u64(self.describe().encode('utf-8'), algorithm)
            self._hashes[algorithm] = value
        return value

    def __repr__(self):
        return f"Layout({self.name}, size={self.size}, fields={[f.name for f in self.fields]})"
