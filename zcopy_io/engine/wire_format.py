"""
Header layout of a serialized span.

    [static version u64]   present with Mode.WITH_STATIC_VERSION
    [checksum u64]         present with Mode.WITH_INTEGRITY, covers every byte after it
    [root offset u64]      always present
    [payload ...]

All integers are little-endian. All offsets stored anywhere in the span are
absolute positions inside the span.
"""

import struct
from dataclasses import dataclass

from zcopy_data_model.mode import Mode

U64 = struct.Struct('<Q')
SLOT_SIZE = U64.size
RECORD_ALIGNMENT = 8


@dataclass(frozen=True)
class HeaderLayout:
    version_pos: int
    checksum_pos: int
    root_pos: int
    size: int

    @staticmethod
    def for_mode(mode: Mode) -> "HeaderLayout":
        pos = 0
        version_pos = checksum_pos = -1
        if mode.has(Mode.WITH_STATIC_VERSION):
            version_pos = pos
            pos += SLOT_SIZE
        if mode.has(Mode.WITH_INTEGRITY):
            checksum_pos = pos
            pos += SLOT_SIZE
        return HeaderLayout(version_pos=version_pos, checksum_pos=checksum_pos, root_pos=pos,
                            size=pos + SLOT_SIZE)

    @property
    def has_version(self) -> bool:
        return self.version_pos >= 0

    @property
    def has_checksum(self) -> bool:
        return self.checksum_pos >= 0


@dataclass(frozen=True)
class TypedPointer:
    """
    Schema class plus the absolute offset of its root record inside a span.

    A pointer carries no reference to the bytes; it is only meaningful when
    resolved against the span it was produced from.
    """
    cls: type
    offset: int
