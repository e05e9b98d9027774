import errno
import fcntl
import logging
import mmap
import os
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from zcopy_exception_model.exception import OpenError, OutOfSpaceError, HandleReleasedError
from zcopy_io.config import get_settings
from zcopy_io.core.interface.byte_target_interface import ByteTarget

# Set up logger for this module
logger = logging.getLogger(__name__)


class Protection(Enum):
    READ = "read"
    WRITE = "write"


class MappedRegion(ByteTarget):
    """
    A file exposed through an OS memory mapping.

    READ regions map the whole file as it is at open time. The exposed view is
    exactly the file length; a zero-length file yields an empty view because
    the OS refuses to map zero bytes.

    WRITE regions create or truncate the file, reserve ``initial_capacity``
    bytes (rounded up to the page size) and grow by extending the file and
    remapping. Bytes keep their offsets across growth. On close the file is
    truncated back to the logical ``size`` so page padding never becomes part
    of the payload.

    The mapping and the file descriptor are owned together: ``close()`` (or
    leaving the ``with`` block) releases both, and a constructor failure
    releases whatever was acquired before re-raising.

    Attributes:
        _path (Path): Backing file
        _protection (Protection): READ or WRITE
        _size (int): Logical length in bytes
        _capacity (int): Mapped length in bytes
    """

    def __init__(self, path: Union[str, os.PathLike], protection: Protection = Protection.READ,
                 page_size: Optional[int] = None, initial_capacity: Optional[int] = None,
                 lock_file: Optional[bool] = None, fsync_on_close: Optional[bool] = None):
        cfg = get_settings()
        self._path = Path(path)
        self._protection = protection
        self._page_size = page_size or cfg.page_size
        self._lock_file = cfg.lock_files if lock_file is None else lock_file
        self._fsync_on_close = cfg.fsync_on_close if fsync_on_close is None else fsync_on_close
        self._file = None
        self._mmap: Optional[mmap.mmap] = None
        self._size = 0
        self._capacity = 0
        self._closed = False

        try:
            self._file = self._open_file()
            if self.writable:
                self._map(self._round_up(initial_capacity or cfg.initial_capacity))
            else:
                self._map_existing()
        except BaseException:
            self._closed = True
            self._unmap()
            self._close_file()
            raise
        logger.debug(f"Opened {self._protection.value} region {self._path} "
                     f"(size={self._size}, capacity={self._capacity})")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def protection(self) -> Protection:
        return self._protection

    @property
    def writable(self) -> bool:
        return self._protection is Protection.WRITE

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def size(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return self._capacity

    def _open_file(self):
        mode = 'w+b' if self.writable else 'rb'
        try:
            f = self._path.open(mode)
        except OSError as e:
            raise OpenError(f"Cannot open file for {self._protection.value}", path=str(self._path),
                            mode=self._protection.value, cause=e) from e
        if self._lock_file:
            # Attempt file lock, but don't fail if it's already held
            try:
                flags = fcntl.LOCK_EX if self.writable else fcntl.LOCK_SH
                fcntl.flock(f.fileno(), flags | fcntl.LOCK_NB)
            except BlockingIOError:
                logger.warning(
                    f"Could not acquire {'exclusive' if self.writable else 'shared'} lock on {self._path}, "
                    f"proceeding without lock")
        return f

    def _round_up(self, size: int) -> int:
        size = max(size, 1)
        return ((size + self._page_size - 1) // self._page_size) * self._page_size

    def _map_existing(self):
        size = os.fstat(self._file.fileno()).st_size
        self._size = self._capacity = size
        if size == 0:
            return
        try:
            self._mmap = mmap.mmap(self._file.fileno(), size, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            raise OpenError("Cannot map file", path=str(self._path), mode=self._protection.value,
                            cause=e) from e

    def _extend_file(self, new_size: int):
        # blocks must be reserved up front; a sparse file fails later with SIGBUS on page write
        self._file.flush()
        fd = self._file.fileno()
        current = os.fstat(fd).st_size
        if new_size <= current:
            return
        if hasattr(os, "posix_fallocate"):
            try:
                os.posix_fallocate(fd, current, new_size - current)
                return
            except OSError as e:
                if e.errno not in (errno.EOPNOTSUPP, errno.EINVAL, errno.ENOSYS):
                    raise
                logger.debug(f"posix_fallocate unsupported for {self._path}, extending with truncate")
        self._file.truncate(new_size)
        self._file.flush()

    def _map(self, capacity: int):
        try:
            self._extend_file(capacity)
        except OSError as e:
            raise OutOfSpaceError("Cannot extend file", path=str(self._path), requested_size=capacity,
                                  cause=e) from e
        self._remap(capacity)

    def _remap(self, capacity: int):
        try:
            self._mmap = mmap.mmap(self._file.fileno(), capacity, access=mmap.ACCESS_WRITE)
        except (OSError, ValueError) as e:
            raise OpenError("Cannot map file", path=str(self._path), mode=self._protection.value,
                            cause=e) from e
        self._capacity = capacity

    def _unmap(self):
        if self._mmap is None:
            return
        mapping, self._mmap = self._mmap, None
        try:
            mapping.close()
        except BufferError:
            # exported views still reference the pages; they unmap when collected
            logger.warning(f"Mapping of {self._path} is still referenced by live buffers, "
                           f"deferring unmap until they are released")

    def _close_file(self):
        if self._file is None:
            return
        f, self._file = self._file, None
        try:
            if self._lock_file:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        finally:
            f.close()

    def _check_open(self, operation: str):
        if self._closed:
            raise HandleReleasedError(f"Region {self._path} is closed", operation=operation)

    def _check_writable(self, operation: str):
        self._check_open(operation)
        if not self.writable:
            raise ValueError(f"Region {self._path} is mapped read-only, cannot {operation}")

    def ensure_capacity(self, size: int) -> None:
        """
        Grow the mapping so that at least ``size`` bytes are addressable.

        The new capacity is at least double the old one, rounded up to the
        page size. If the file cannot be extended the previous mapping is
        restored before OutOfSpaceError propagates, so the region stays usable.
        """
        self._check_writable("grow")
        if size <= self._capacity:
            return
        old_capacity = self._capacity
        new_capacity = self._round_up(max(size, old_capacity * 2))
        self._mmap.flush()
        self._unmap()
        try:
            self._map(new_capacity)
        except OutOfSpaceError:
            self._remap(old_capacity)
            raise
        logger.debug(f"Grew region {self._path} from {old_capacity} to {new_capacity} bytes")

    def write(self, offset: int, data) -> None:
        self._check_writable("write")
        end = offset + len(data)
        if offset < 0 or end > self._capacity:
            raise ValueError(f"Write range {offset}:{end} exceeds mapped capacity {self._capacity}")
        self._mmap[offset:end] = data

    def set_size(self, size: int) -> None:
        self._check_writable("resize")
        if size < 0 or size > self._capacity:
            raise ValueError(f"Logical size {size} outside mapped capacity {self._capacity}")
        self._size = size

    def view(self, start: int = 0, end: Optional[int] = None) -> memoryview:
        """
        Read-only view over logical bytes ``start:end`` of the region.

        The caller must release the view (or let it go out of scope) before
        the region grows or closes, otherwise remapping fails and unmapping
        is deferred.
        """
        self._check_open("view")
        end = self._size if end is None else end
        if start < 0 or start > end or end > self._size:
            raise ValueError(f"View range {start}:{end} exceeds region size {self._size}")
        if self._mmap is None:
            return memoryview(b'')
        if start == 0 and end == len(self._mmap) and not self.writable:
            return memoryview(self._mmap)
        with memoryview(self._mmap) as whole:
            return whole[start:end].toreadonly()

    def read_bytes(self, offset: int = 0, length: Optional[int] = None) -> bytes:
        """Copy ``length`` logical bytes starting at ``offset``."""
        self._check_open("read")
        end = self._size if length is None else offset + length
        if offset < 0 or end > self._size:
            raise ValueError(f"Read range {offset}:{end} exceeds region size {self._size}")
        if self._mmap is None:
            return b''
        return self._mmap[offset:end]

    def close(self) -> None:
        """
        Release the mapping and the file descriptor.

        WRITE regions are flushed and truncated to their logical size first.
        Closing twice is a no-op.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if self.writable and self._mmap is not None:
                self._mmap.flush()
            self._unmap()
            if self.writable:
                self._file.truncate(self._size)
                self._file.flush()
                if self._fsync_on_close:
                    os.fsync(self._file.fileno())
        finally:
            self._close_file()
        logger.debug(f"Closed {self._protection.value} region {self._path} (size={self._size})")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __repr__(self):
        state = "closed" if self._closed else f"size={self._size}, capacity={self._capacity}"
        return f"MappedRegion({str(self._path)!r}, {self._protection.value}, {state})"
