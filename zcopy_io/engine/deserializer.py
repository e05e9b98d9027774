import logging
import struct
from typing import List, Optional, Set, Tuple, Union

from zcopy_data_model.checksum_util import ChecksumFunc, checksum_u64
from zcopy_data_model.layout import FieldKind, FieldSpec, Layout, NULL_OFFSET
from zcopy_data_model.mode import Mode
from zcopy_exception_model.exception import DeserializeError, VersionMismatchError, IntegrityCheckFailureError
from zcopy_io.config import get_settings
from zcopy_io.engine.wire_format import HeaderLayout, TypedPointer, U64

logger = logging.getLogger(__name__)

_PAIR = struct.Struct('<QQ')


class _BoundsValidator:
    """
    Walks every record reachable from the root and checks that it, and all
    data it references, lies inside the payload and strictly before the
    record that references it. Nothing is decoded or copied.
    """

    def __init__(self, view: memoryview, payload_start: int):
        self._view = view
        self._start = payload_start
        self._checked: Set[Tuple[type, int]] = set()

    def _check_range(self, offset: int, length: int, limit: int, what: str):
        if offset < self._start or length < 0 or offset + length > limit:
            raise DeserializeError(f"{what} at {offset} (+{length}) is outside the valid range "
                                   f"{self._start}:{limit}", offset=offset)

    def check(self, layout: Layout, root: int):
        stack: List[Tuple[Layout, int, int]] = [(layout, root, self._view.nbytes)]
        while stack:
            current, offset, limit = stack.pop()
            self._check_range(offset, current.size, limit, f"{current.name} record")
            key = (current.cls, offset)
            if key in self._checked:
                continue
            self._checked.add(key)
            for spec in current.fields:
                self._check_slot(spec, offset + spec.offset, offset, f"{current.name}.{spec.name}", stack)

    def _check_slot(self, spec: FieldSpec, pos: int, limit: int, what: str, stack: list):
        kind = spec.kind
        if kind in (FieldKind.STR, FieldKind.BYTES):
            offset, length = _PAIR.unpack_from(self._view, pos)
            self._check_range(offset, length, limit, what)
        elif kind is FieldKind.ARRAY:
            offset, count = _PAIR.unpack_from(self._view, pos)
            self._check_range(offset, count * spec.dtype.itemsize, limit, what)
        elif kind is FieldKind.STRUCT:
            offset = U64.unpack_from(self._view, pos)[0]
            if offset == NULL_OFFSET:
                if not spec.optional:
                    raise DeserializeError(f"{what} is null but not Optional", offset=pos)
                return
            stack.append((Layout.of(spec.target), offset, limit))
        elif kind is FieldKind.LIST:
            offset, count = _PAIR.unpack_from(self._view, pos)
            element = spec.element
            self._check_range(offset, count * element.size, limit, what)
            for i in range(count):
                self._check_slot(element, offset + i * element.size, offset, f"{what}[{i}]", stack)


def deserialize(cls: type, buffer, mode: Mode = Mode.DEFAULT,
                checksum_algorithm: Optional[Union[str, ChecksumFunc]] = None) -> TypedPointer:
    """
    Validate ``buffer`` as a serialized ``cls`` and return a pointer to its root.

    No object is built and no payload byte is copied: the pointer is an
    offset into ``buffer`` and is only meaningful together with it. The span
    must have been written with the same ``mode`` and ``checksum_algorithm``.

    Raises:
        VersionMismatchError: If the stored schema hash differs from ``cls``'s
        IntegrityCheckFailureError: If the stored checksum does not match
        DeserializeError: If the span is truncated or holds out-of-range offsets
        UnsupportedTypeError: If ``cls`` has no binary layout
    """
    mode = Mode(mode)
    layout = Layout.of(cls)
    algorithm = checksum_algorithm or get_settings().checksum_algorithm
    header = HeaderLayout.for_mode(mode)

    with memoryview(buffer) as view:
        if view.itemsize != 1 or view.ndim != 1:
            raise TypeError("deserialize expects a flat byte buffer")
        if view.nbytes < header.size:
            raise DeserializeError(f"Span of {view.nbytes} bytes is shorter than the {header.size}-byte header")

        if header.has_version:
            stored = U64.unpack_from(view, header.version_pos)[0]
            expected = layout.type_hash(algorithm)
            if stored != expected:
                raise VersionMismatchError(f"Span was not written for schema {layout.name}",
                                           expected=expected, actual=stored)

        if header.has_checksum:
            stored = U64.unpack_from(view, header.checksum_pos)[0]
            actual = checksum_u64(view[header.checksum_pos + U64.size:], algorithm)
            if stored != actual:
                raise IntegrityCheckFailureError("Span checksum does not match its content",
                                                 expected=stored, actual=actual)

        nbytes = view.nbytes
        root = U64.unpack_from(view, header.root_pos)[0]
        _BoundsValidator(view, header.size).check(layout, root)

    logger.debug(f"Validated {layout.name} span ({nbytes} bytes, root at {root})")
    return TypedPointer(cls=cls, offset=root)
