import logging
from typing import Generic, TypeVar

from zcopy_data_model.layout import Layout
from zcopy_exception_model.exception import HandleReleasedError
from zcopy_io.engine.views import StructView
from zcopy_io.engine.wire_format import TypedPointer
from zcopy_io.persistence.memory_holder import MemoryHolder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Wrapped(Generic[T]):
    """
    Caller-facing handle: a MemoryHolder plus a pointer into its bytes.

    The handle owns the holder. The pointer is only an offset and is resolved
    against the holder on every access, so the pointee can never be read
    after the bytes are gone:

        with read_mmap(path, Record) as record:
            print(record.id, record.name)      # fields of the root record
        record.id                              # raises HandleReleasedError

    Attribute access is forwarded to the root record's StructView, and
    ``handle["field"]`` reaches fields whose names clash with the handle's
    own attributes; ``get()``
    returns that view and ``materialize()`` a deep copy as the schema
    dataclass. Handles can be shared by reference but never copied.
    """

    __slots__ = ("_holder", "_pointer", "_layout")

    def __init__(self, holder: MemoryHolder, pointer: TypedPointer):
        self._holder = holder
        self._pointer = pointer
        self._layout = Layout.of(pointer.cls)

    @property
    def pointer(self) -> TypedPointer:
        return self._pointer

    @property
    def schema(self) -> type:
        return self._pointer.cls

    @property
    def released(self) -> bool:
        return self._holder.released

    @property
    def nbytes(self) -> int:
        return self._holder.nbytes

    def get(self) -> StructView:
        """View of the pointee; raises HandleReleasedError once released."""
        if self._holder.released:
            raise HandleReleasedError(f"{self._layout.name} handle has been released", operation="get")
        return StructView(self._layout, self._holder, self._pointer.offset)

    def materialize(self) -> T:
        return self.get().materialize()

    def release(self) -> None:
        """Release the backing bytes. Views obtained earlier stop working."""
        if not self._holder.released:
            self._holder.release()
            logger.debug(f"Released {self._layout.name} handle")

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.get(), name)

    def __getitem__(self, name: str):
        # reaches fields shadowed by handle attributes, e.g. handle["schema"]
        return self.get()[name]

    def __eq__(self, other):
        if isinstance(other, Wrapped):
            other = other.get()
        return self.get() == other

    __hash__ = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def __copy__(self):
        raise TypeError("Wrapped handles cannot be copied; share the reference instead")

    def __deepcopy__(self, memo):
        raise TypeError("Wrapped handles cannot be copied; use materialize() for an independent object")

    def __reduce__(self):
        raise TypeError("Wrapped handles cannot be pickled; use materialize()")

    def __repr__(self):
        if self._holder.released:
            return f"Wrapped[{self._layout.name}](released)"
        return f"Wrapped[{self._layout.name}]({self.get()!r})"
