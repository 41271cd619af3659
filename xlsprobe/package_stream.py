"""Lazy decrypting view over an ``EncryptedPackage`` stream."""

import io
import struct
from typing import BinaryIO, Callable, Final, Optional

from .errors import StructuralError

SEGMENT_LENGTH: Final[int] = 4096
SIZE_PREFIX_LENGTH: Final[int] = 8
CIPHER_BLOCK_SIZE: Final[int] = 16

SegmentDecryptor = Callable[[int, bytes], bytes]


class EncryptedPackageStream(io.RawIOBase):
    """Seekable plaintext view of an encrypted OOXML package.

    The payload starts with a little-endian u64 plaintext size followed by
    ciphertext in fixed-size segments. ``decrypt_segment`` receives the
    segment index and its ciphertext; only the segment being read is held in
    memory.
    """

    def __init__(
        self,
        package: BinaryIO,
        decrypt_segment: SegmentDecryptor,
        segment_length: int = SEGMENT_LENGTH,
    ):
        super().__init__()
        self._package = package
        self._decrypt_segment = decrypt_segment
        self._segment_length = segment_length
        self._package.seek(0)
        prefix = self._package.read(SIZE_PREFIX_LENGTH)
        if len(prefix) != SIZE_PREFIX_LENGTH:
            raise StructuralError("encrypted package size prefix is truncated")
        self._size = struct.unpack("<Q", prefix)[0]
        self._position = 0
        self._segment_index: Optional[int] = None
        self._segment = b""

    @property
    def size(self) -> int:
        return self._size

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._position

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._position + offset
        elif whence == io.SEEK_END:
            position = self._size + offset
        else:
            raise ValueError("invalid whence (%r)" % whence)
        if position < 0:
            raise ValueError("negative seek position %d" % position)
        self._position = position
        return position

    def _load_segment(self, index: int) -> bytes:
        if index == self._segment_index:
            return self._segment
        self._package.seek(SIZE_PREFIX_LENGTH + index * self._segment_length)
        ciphertext = self._package.read(self._segment_length)
        if not ciphertext:
            raise StructuralError("encrypted package is shorter than its declared size")
        if len(ciphertext) % CIPHER_BLOCK_SIZE:
            raise StructuralError("encrypted package segment %d is not block aligned" % index)
        self._segment = self._decrypt_segment(index, ciphertext)
        self._segment_index = index
        return self._segment

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        written = 0
        while written < len(view) and self._position < self._size:
            index, within = divmod(self._position, self._segment_length)
            segment = self._load_segment(index)
            length = min(
                len(view) - written,
                len(segment) - within,
                self._size - self._position,
            )
            if length <= 0:
                raise StructuralError("encrypted package is shorter than its declared size")
            view[written : written + length] = segment[within : within + length]
            written += length
            self._position += length
        return written
