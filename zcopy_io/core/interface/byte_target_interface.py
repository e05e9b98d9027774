from abc import ABC, abstractmethod


class ByteTarget(ABC):
    """
    Abstract interface for a growable, offset-addressed byte store.

    A GrowableSink drives a ByteTarget: it asks for capacity, copies bytes in
    at absolute offsets and finally records how many bytes are meaningful.
    Implementations must keep every byte already written at its original
    offset when they grow.
    """

    @property
    @abstractmethod
    def capacity(self) -> int:
        """Number of bytes currently addressable without growing."""
        ...

    @abstractmethod
    def ensure_capacity(self, size: int) -> None:
        """
        Make at least ``size`` bytes addressable.

        Args:
            size: Required capacity in bytes

        Raises:
            OutOfSpaceError: If the backing storage cannot grow
        """
        ...

    @abstractmethod
    def write(self, offset: int, data) -> None:
        """
        Copy ``data`` into the target starting at ``offset``.

        The range must already be within ``capacity``.
        """
        ...

    @abstractmethod
    def view(self, start: int = 0, end: int = None) -> memoryview:
        """
        Read-only view over logical bytes ``start:end``.

        The view must be released before the target grows or closes.
        """
        ...

    @abstractmethod
    def set_size(self, size: int) -> None:
        """Record the logical length, i.e. the bytes that count as payload."""
        ...
