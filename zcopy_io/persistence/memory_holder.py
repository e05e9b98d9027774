import logging
from typing import Optional, Union

from zcopy_exception_model.exception import HandleReleasedError
from zcopy_io.persistence.mapped_region import MappedRegion

logger = logging.getLogger(__name__)

_REGION = "region"
_BUFFER = "buffer"


class MemoryHolder:
    """
    Sole owner of exactly one byte source: a MappedRegion or a heap buffer.

    The holder only hands out a read-only view of the bytes; which variant it
    holds is private. Build one with ``from_region`` or ``from_buffer``; the
    source is moved in and must not be used by the caller afterwards.

    Holders are not copyable. Release happens through ``release()``; a
    released holder raises HandleReleasedError on access.
    """

    __slots__ = ("_kind", "_source", "_view", "__weakref__")

    def __init__(self, source: Union[MappedRegion, bytes, bytearray, memoryview]):
        if isinstance(source, MappedRegion):
            self._kind = _REGION
            self._source: Optional[Union[MappedRegion, bytes]] = source
            self._view: Optional[memoryview] = source.view()
        elif isinstance(source, (bytes, bytearray, memoryview)):
            self._kind = _BUFFER
            # bytes is immutable; anything else is snapshotted so nobody else can mutate it
            self._source = source if isinstance(source, bytes) else bytes(source)
            self._view = memoryview(self._source)
        else:
            raise TypeError(f"MemoryHolder cannot own {type(source).__name__}")

    @classmethod
    def from_region(cls, region: MappedRegion) -> "MemoryHolder":
        return cls(region)

    @classmethod
    def from_buffer(cls, buffer: Union[bytes, bytearray, memoryview]) -> "MemoryHolder":
        return cls(buffer)

    @property
    def released(self) -> bool:
        return self._view is None

    @property
    def buffer(self) -> memoryview:
        """Read-only view over the held bytes."""
        if self._view is None:
            raise HandleReleasedError("Memory holder has been released", operation="buffer")
        return self._view

    @property
    def nbytes(self) -> int:
        return self.buffer.nbytes

    def release(self) -> None:
        """
        Drop the held bytes. A mapped region is unmapped and its file closed.

        If callers still hold buffers derived from the bytes (numpy arrays,
        memoryview slices), the mapping itself stays alive until those are
        collected.
        """
        if self._view is None:
            return
        view, self._view = self._view, None
        source, self._source = self._source, None
        try:
            view.release()
        except BufferError:
            logger.warning("Memory holder view is still exported, bytes are freed once the exports are released")
        if self._kind == _REGION:
            source.close()
        logger.debug(f"Released {self._kind} memory holder")

    def __copy__(self):
        raise TypeError("MemoryHolder owns its bytes exclusively and cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("MemoryHolder owns its bytes exclusively and cannot be copied")

    def __reduce__(self):
        raise TypeError("MemoryHolder cannot be pickled")

    def __repr__(self):
        if self._view is None:
            return "MemoryHolder(released)"
        return f"MemoryHolder(nbytes={self._view.nbytes})"
