"""Classifies a workbook container from its first eight bytes."""

import enum
import logging
import struct
from typing import BinaryIO, Final

from .cfbf import is_compound_document

logger = logging.getLogger(__name__)

PROBE_SIZE: Final[int] = 8
ZIP_SIGNATURE: Final[bytes] = b"PK"

BOF_BIFF2: Final[int] = 0x0009
BOF_BIFF3: Final[int] = 0x0209
BOF_BIFF4: Final[int] = 0x0409
BOF_BIFF5_8: Final[int] = 0x0809


class ContainerKind(enum.Enum):
    RAW_BIFF = "raw-biff"
    COMPOUND_DOCUMENT = "compound-document"
    ZIP_PACKAGE = "zip-package"
    UNKNOWN = "unknown"


def read_probe(stream: BinaryIO) -> bytes:
    """Read up to PROBE_SIZE bytes from the start and rewind to offset 0."""
    stream.seek(0)
    try:
        probe = stream.read(PROBE_SIZE)
    finally:
        stream.seek(0)
    return probe or b""


def is_raw_biff_stream(probe: bytes) -> bool:
    """Return True when ``probe`` starts with a worksheet/workbook BOF record."""
    if len(probe) < PROBE_SIZE:
        return False
    record_id, size, version, sheet_type = struct.unpack_from("<4H", probe, 0)
    if record_id == BOF_BIFF2:
        return size == 4 and sheet_type in (0x10, 0x20, 0x40)
    if record_id in (BOF_BIFF3, BOF_BIFF4):
        return size == 6 and sheet_type in (0x10, 0x20, 0x40, 0x100)
    if record_id == BOF_BIFF5_8:
        if not 4 <= size < 20:
            return False
        if version not in (0, 0x0500, 0x0600):
            return False
        return sheet_type in (0x5, 0x6, 0x10, 0x20, 0x40, 0x100)
    return False


def classify_probe(probe: bytes) -> ContainerKind:
    if is_compound_document(probe):
        return ContainerKind.COMPOUND_DOCUMENT
    if is_raw_biff_stream(probe):
        return ContainerKind.RAW_BIFF
    if probe[:2] == ZIP_SIGNATURE:
        return ContainerKind.ZIP_PACKAGE
    return ContainerKind.UNKNOWN


def classify(stream: BinaryIO) -> ContainerKind:
    """Sniff the container kind of ``stream``, leaving it positioned at 0."""
    kind = classify_probe(read_probe(stream))
    logger.debug("classified container as %s", kind.value)
    return kind
