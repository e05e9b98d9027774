import logging

from zcopy_io.core.interface.byte_target_interface import ByteTarget

logger = logging.getLogger(__name__)


class BufferTarget(ByteTarget):
    """In-memory ByteTarget backed by a bytearray."""

    def __init__(self):
        self._buffer = bytearray()
        self._size = 0

    @property
    def capacity(self) -> int:
        return len(self._buffer)

    def ensure_capacity(self, size: int) -> None:
        if size > len(self._buffer):
            self._buffer.extend(b"\x00" * (max(size, len(self._buffer) * 2) - len(self._buffer)))

    def write(self, offset: int, data) -> None:
        end = offset + len(data)
        if offset < 0 or end > len(self._buffer):
            raise ValueError(f"Write range {offset}:{end} exceeds capacity {len(self._buffer)}")
        self._buffer[offset:end] = data

    def view(self, start: int = 0, end: int = None) -> memoryview:
        end = self._size if end is None else end
        if start < 0 or start > end or end > self._size:
            raise ValueError(f"View range {start}:{end} exceeds buffer size {self._size}")
        with memoryview(self._buffer) as whole:
            return whole[start:end].toreadonly()

    def set_size(self, size: int) -> None:
        self._size = size

    def getvalue(self) -> bytes:
        return bytes(self._buffer[:self._size])


class GrowableSink:
    """
    Append-only byte sink over a ByteTarget.

    The write offset only moves forward. An append that does not fit asks the
    target to grow first; targets keep existing bytes at their offsets, so
    every offset returned by ``append`` stays valid for the life of the sink.

    ``write_at`` overwrites bytes that were already appended (the serializer
    uses it to fill in its header once the payload is known). It never moves
    the write offset.
    """

    def __init__(self, target: ByteTarget):
        self._target = target
        self._offset = 0

    @property
    def target(self) -> ByteTarget:
        return self._target

    @property
    def size(self) -> int:
        return self._offset

    def append(self, data, alignment: int = 1) -> int:
        """
        Append ``data`` and return the offset it was written at.

        Args:
            data: Bytes-like object
            alignment: Pad with zero bytes first so the returned offset is a
                multiple of ``alignment``

        Raises:
            OutOfSpaceError: If the target cannot grow
        """
        data = memoryview(data).cast('B')
        start = self._offset
        if alignment > 1 and start % alignment:
            start += alignment - start % alignment
        end = start + len(data)
        if end > self._target.capacity:
            self._target.ensure_capacity(end)
        if start > self._offset:
            self._target.write(self._offset, b"\x00" * (start - self._offset))
        if data:
            self._target.write(start, data)
        self._offset = end
        self._target.set_size(end)
        return start

    def write_at(self, offset: int, data) -> None:
        """Overwrite already appended bytes at ``offset``."""
        data = memoryview(data).cast('B')
        end = offset + len(data)
        if offset < 0 or end > self._offset:
            raise ValueError(f"Patch range {offset}:{end} is outside written range 0:{self._offset}")
        self._target.write(offset, data)

    def view(self, start: int = 0) -> memoryview:
        """Read-only view over the bytes appended from ``start`` on; release it before appending again."""
        return self._target.view(start, self._offset)
