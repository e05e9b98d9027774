class PersistenceError(Exception):
    """
    Base class for every failure reported by the memory-backed I/O layer.

    Callers that only need to know "no usable file or object was produced"
    can catch this single type.
    """

    def __init__(self, message, path=None, cause: Exception = None):
        self.path = path
        self.message = message
        self.cause = cause
        super().__init__(self.message)

    def _details(self):
        details = []
        if self.path is not None:
            details.append(f"path={self.path}")
        if self.cause is not None:
            details.append(f"cause={self.cause}")
        return details

    def __str__(self):
        details = self._details()
        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message


class OpenError(PersistenceError):
    """
    Exception raised when a file cannot be opened, created, truncated or mapped.

    Attributes:
        path -- filesystem path that failed to open
        mode -- the access mode that was requested ("read" or "write")
        cause -- underlying OSError, if any
        message -- explanation of the error
    """

    def __init__(self, message, path=None, mode=None, cause: Exception = None):
        self.mode = mode
        super().__init__(message, path=path, cause=cause)

    def _details(self):
        details = []
        if self.path is not None:
            details.append(f"path={self.path}")
        if self.mode is not None:
            details.append(f"mode={self.mode}")
        if self.cause is not None:
            details.append(f"cause={self.cause}")
        return details


class OutOfSpaceError(PersistenceError):
    """
    Exception raised when a write-mapped region cannot grow its backing file.
    """

    def __init__(self, message, path=None, requested_size=None, cause: Exception = None):
        self.requested_size = requested_size
        super().__init__(message, path=path, cause=cause)

    def _details(self):
        details = []
        if self.path is not None:
            details.append(f"path={self.path}")
        if self.requested_size is not None:
            details.append(f"requested_size={self.requested_size}")
        if self.cause is not None:
            details.append(f"cause={self.cause}")
        return details


class DeserializeError(PersistenceError):
    """
    Exception raised when a byte span is rejected by the deserializer:
    truncated input, malformed offsets, or a failed version/integrity check.
    """

    def __init__(self, message, path=None, offset=None, cause: Exception = None):
        self.offset = offset
        super().__init__(message, path=path, cause=cause)

    def _details(self):
        details = []
        if self.path is not None:
            details.append(f"path={self.path}")
        if self.offset is not None:
            details.append(f"offset={self.offset}")
        if self.cause is not None:
            details.append(f"cause={self.cause}")
        return details


class VersionMismatchError(DeserializeError):
    """
    Exception raised when the static version tag stored in a byte span does
    not match the version computed from the schema being read.
    """

    def __init__(self, message, expected=None, actual=None, path=None):
        self.expected = expected
        self.actual = actual
        super().__init__(message, path=path)

    def _details(self):
        details = []
        if self.path is not None:
            details.append(f"path={self.path}")
        if self.expected is not None:
            details.append(f"expected={self.expected:#018x}")
        if self.actual is not None:
            details.append(f"actual={self.actual:#018x}")
        return details


class IntegrityCheckFailureError(DeserializeError):
    """
    Exception raised when the stored content checksum does not match the
    checksum recomputed over the byte span.
    """

    def __init__(self, message, expected=None, actual=None, path=None):
        self.expected = expected
        self.actual = actual
        super().__init__(message, path=path)

    def _details(self):
        details = []
        if self.path is not None:
            details.append(f"path={self.path}")
        if self.expected is not None:
            details.append(f"expected={self.expected:#018x}")
        if self.actual is not None:
            details.append(f"actual={self.actual:#018x}")
        return details


class HandleReleasedError(PersistenceError):
    """
    Exception raised when bytes are accessed through a region, holder or
    handle that has already been released.
    """

    def __init__(self, message, operation=None):
        self.operation = operation
        super().__init__(message)

    def _details(self):
        if self.operation is not None:
            return [f"operation={self.operation}"]
        return []


class UnsupportedTypeError(TypeError):
    """
    Exception raised when a schema uses a field annotation that has no
    binary layout.
    """

    def __init__(self, message, type_name=None, field_name=None):
        self.type_name = type_name
        self.field_name = field_name
        self.message = message
        super().__init__(self.message)

    def __str__(self):
        details = []
        if self.type_name is not None:
            details.append(f"type={self.type_name}")
        if self.field_name is not None:
            details.append(f"field={self.field_name}")

        if details:
            return f"{self.message} ({', '.join(details)})"
        return self.message
