"""Serialization mode flags shared by the writer and the reader."""

from enum import IntFlag


class Mode(IntFlag):
    """
    Combinable serialization behaviors.

    The I/O layer never interprets these flags; it only hands them to the
    serializer and deserializer. A byte span must be read with exactly the
    flags it was written with: the header layout depends on them.

    Members:
        NONE: bare root offset followed by payload.
        WITH_STATIC_VERSION: prefix a 64-bit schema hash; readers reject spans
            whose hash differs from the schema they request.
        WITH_INTEGRITY: prefix a 64-bit checksum of everything after it;
            readers reject spans whose checksum does not match.
        DEFAULT: both version and integrity tagging.
    """
    NONE = 0
    WITH_STATIC_VERSION = 1
    WITH_INTEGRITY = 2
    DEFAULT = WITH_STATIC_VERSION | WITH_INTEGRITY

    def has(self, flag: "Mode") -> bool:
        return (self & flag) == flag
