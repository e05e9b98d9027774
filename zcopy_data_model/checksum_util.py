import hashlib
import zlib
from typing import Dict, Union, Callable

# Type for checksum function: takes bytes -> unsigned 64-bit integer
ChecksumFunc = Callable[[bytes], int]

CHECKSUM_MASK = 0xFFFFFFFFFFFFFFFF


def _digest_to_u64(digest: bytes) -> int:
    """Fold the leading 8 bytes of a digest into a little-endian u64."""
    return int.from_bytes(digest[:8], 'little')


# Predefined checksum functions
_PREDEFINED_CHECKSUMS: Dict[str, ChecksumFunc] = {
    'crc32': lambda b: zlib.crc32(b) & 0xFFFFFFFF,
    'md5': lambda b: _digest_to_u64(hashlib.md5(b).digest()),
    'sha1': lambda b: _digest_to_u64(hashlib.sha1(b).digest()),
    'sha256': lambda b: _digest_to_u64(hashlib.sha256(b).digest()),
    'blake2b': lambda b: _digest_to_u64(hashlib.blake2b(b, digest_size=8).digest()),
}


def get_checksum_func(
    algorithm: Union[str, ChecksumFunc]
) -> ChecksumFunc:
    """
    Resolve an algorithm name or accept a custom function.

    Custom functions must return an integer; the result is masked to 64 bits
    by the caller that stores it.
    """
    if callable(algorithm):
        return algorithm
    alg = algorithm.lower()
    if alg in _PREDEFINED_CHECKSUMS:
        return _PREDEFINED_CHECKSUMS[alg]
    # fallback to hashlib
    try:
        hashlib.new(alg)
    except (ValueError, TypeError):
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")

    def _fn(b: bytes, name=alg):
        h = hashlib.new(name)
        h.update(b)
        return _digest_to_u64(h.digest())
    return _fn


def checksum_u64(data: Union[bytes, memoryview], algorithm: Union[str, ChecksumFunc] = 'sha256') -> int:
    """
    Compute a 64-bit checksum of ``data`` with the given algorithm.
    """
    return get_checksum_func(algorithm)(data) & CHECKSUM_MASK
