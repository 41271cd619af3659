"""Minimal OLE2 CFBF navigator implemented with the standard library."""

import enum
import io
import logging
import struct
from dataclasses import dataclass
from typing import BinaryIO, Dict, Final, List, Optional, Sequence

from .errors import CompoundDocumentError

logger = logging.getLogger(__name__)

OLE_SIGNATURE: Final[bytes] = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
HEADER_SIZE: Final[int] = 512
DIRECTORY_ENTRY_SIZE: Final[int] = 128
BYTE_ORDER_MARK: Final[int] = 0xFFFE
FREESECT = 0xFFFFFFFF
ENDOFCHAIN = 0xFFFFFFFE
MAXREGSECT = 0xFFFFFFFA
CHAIN_END = (FREESECT, ENDOFCHAIN)


class EntryType(enum.IntEnum):
    EMPTY = 0
    STORAGE = 1
    STREAM = 2
    LOCK_BYTES = 3
    PROPERTY = 4
    ROOT = 5


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    entry_type: EntryType
    start_sector: int
    stream_size: int
    is_mini_stream: bool


def is_compound_document(probe: bytes) -> bool:
    return probe[: len(OLE_SIGNATURE)] == OLE_SIGNATURE


class CompoundStream(io.RawIOBase):
    """Read-only, seekable view over a stream scattered across sectors.

    ``offsets`` holds the absolute file offset of every block in the chain;
    blocks are fetched from ``source`` only when read.
    """

    def __init__(self, source: BinaryIO, offsets: Sequence[int], block_size: int, size: int):
        super().__init__()
        if len(offsets) * block_size < size:
            raise CompoundDocumentError("sector chain is shorter than the declared stream size")
        self._source = source
        self._offsets = offsets
        self._block_size = block_size
        self._size = size
        self._position = 0

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

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        written = 0
        while written < len(view) and self._position < self._size:
            index, within = divmod(self._position, self._block_size)
            length = min(
                len(view) - written,
                self._block_size - within,
                self._size - self._position,
            )
            self._source.seek(self._offsets[index] + within)
            chunk = self._source.read(length)
            if len(chunk) != length:
                raise CompoundDocumentError("sector at offset %d is truncated" % self._offsets[index])
            view[written : written + length] = chunk
            written += length
            self._position += length
        return written


class CompoundDocument:
    """Directory lookup and stream materialisation for a Compound File.

    The source is never closed here; callers keep ownership of it.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._header = self._read_header()
        self._validate_header()
        self._fat: Sequence[int] = ()
        self._mini_fat: Sequence[int] = ()
        self._mini_stream_sectors: List[int] = []
        self.entries: List[DirectoryEntry] = []
        self._by_name: Dict[str, DirectoryEntry] = {}
        self._build_fat()
        self._read_directory()
        self._load_mini_fat()
        logger.debug("read %d directory entries (sector size %d)", len(self.entries), self.sector_size)

    def _read_header(self) -> bytes:
        try:
            self._stream.seek(0)
            header = self._stream.read(HEADER_SIZE)
        except OSError as exc:
            raise CompoundDocumentError("failed to read container header") from exc
        if len(header) != HEADER_SIZE:
            raise CompoundDocumentError("container header is truncated")
        return header

    def _validate_header(self) -> None:
        if not is_compound_document(self._header):
            raise CompoundDocumentError("not an OLE2 container")
        byte_order = struct.unpack_from("<H", self._header, 0x1C)[0]
        if byte_order != BYTE_ORDER_MARK:
            raise CompoundDocumentError("unexpected byte order mark 0x%04X" % byte_order)
        sector_shift = struct.unpack_from("<H", self._header, 0x1E)[0]
        mini_sector_shift = struct.unpack_from("<H", self._header, 0x20)[0]
        if sector_shift not in (9, 12) or mini_sector_shift >= sector_shift:
            raise CompoundDocumentError("unsupported sector shift %d" % sector_shift)
        self.sector_size = 1 << sector_shift
        self.mini_sector_size = 1 << mini_sector_shift
        self._fat_sector_count = struct.unpack_from("<I", self._header, 0x2C)[0]
        self._dir_start_sector = struct.unpack_from("<I", self._header, 0x30)[0]
        self.mini_stream_cutoff = struct.unpack_from("<I", self._header, 0x38)[0]
        self._mini_fat_start = struct.unpack_from("<I", self._header, 0x3C)[0]
        self._difat_start = struct.unpack_from("<I", self._header, 0x44)[0]
        self._difat_entries = struct.unpack_from("<109I", self._header, 0x4C)

    def _sector_offset(self, sector_index: int) -> int:
        return self.sector_size * (sector_index + 1)

    def _read_sector(self, sector_index: int) -> bytes:
        if sector_index > MAXREGSECT:
            raise CompoundDocumentError("invalid sector id 0x%08X" % sector_index)
        try:
            self._stream.seek(self._sector_offset(sector_index))
        except OSError as exc:
            raise CompoundDocumentError("failed to seek sector %d" % sector_index) from exc
        sector = self._stream.read(self.sector_size)
        if len(sector) != self.sector_size:
            raise CompoundDocumentError("sector %d is truncated" % sector_index)
        return sector

    def _build_fat(self) -> None:
        fat_sectors = [idx for idx in self._difat_entries if idx not in CHAIN_END]
        next_sector = self._difat_start
        entries_per_sector = (self.sector_size - 4) // 4
        fmt = f"<{entries_per_sector}I"
        seen = set()
        while next_sector not in CHAIN_END:
            if next_sector in seen:
                raise CompoundDocumentError("DIFAT chain loops at sector %d" % next_sector)
            seen.add(next_sector)
            block = self._read_sector(next_sector)
            fat_sectors.extend(
                idx for idx in struct.unpack_from(fmt, block, 0) if idx not in CHAIN_END
            )
            next_sector = struct.unpack_from("<I", block, entries_per_sector * 4)[0]
        if self._fat_sector_count:
            fat_sectors = fat_sectors[: self._fat_sector_count]
        fat_data = bytearray()
        for sector in fat_sectors:
            fat_data.extend(self._read_sector(sector))
        self._fat = struct.unpack(f"<{len(fat_data) // 4}I", fat_data) if fat_data else ()

    @staticmethod
    def _chain(table: Sequence[int], start_sector: int, label: str) -> List[int]:
        chain: List[int] = []
        sector = start_sector
        while sector not in CHAIN_END:
            if sector >= len(table) or len(chain) > len(table):
                raise CompoundDocumentError("%s chain is corrupt" % label)
            chain.append(sector)
            sector = table[sector]
        return chain

    def _sector_chain(self, start_sector: int) -> List[int]:
        return self._chain(self._fat, start_sector, "FAT")

    def _read_chain(self, start_sector: int) -> bytes:
        data = bytearray()
        for sector in self._sector_chain(start_sector):
            data.extend(self._read_sector(sector))
        return bytes(data)

    def _read_directory(self) -> None:
        raw = self._read_chain(self._dir_start_sector)
        for offset in range(0, len(raw) - DIRECTORY_ENTRY_SIZE + 1, DIRECTORY_ENTRY_SIZE):
            entry = raw[offset : offset + DIRECTORY_ENTRY_SIZE]
            name_len = struct.unpack_from("<H", entry, 0x40)[0]
            raw_type = entry[0x42]
            if name_len < 2 or raw_type == EntryType.EMPTY:
                continue
            try:
                entry_type = EntryType(raw_type)
            except ValueError as exc:
                raise CompoundDocumentError("unknown directory entry type %d" % raw_type) from exc
            name = entry[: min(name_len, 64) - 2].decode("utf-16le", errors="ignore").rstrip("\x00")
            start_sector = struct.unpack_from("<I", entry, 0x74)[0]
            stream_size = struct.unpack_from("<Q", entry, 0x78)[0]
            if self.sector_size == 512:
                # version 3 files may leave garbage in the high dword
                stream_size &= 0xFFFFFFFF
            is_mini = entry_type == EntryType.STREAM and stream_size < self.mini_stream_cutoff
            parsed = DirectoryEntry(name, entry_type, start_sector, stream_size, is_mini)
            self.entries.append(parsed)
            self._by_name.setdefault(name, parsed)
        root = self.entries[0] if self.entries else None
        if root is None or root.entry_type != EntryType.ROOT:
            raise CompoundDocumentError("root directory entry is missing")

    def _load_mini_fat(self) -> None:
        root = self.entries[0]
        if root.stream_size == 0 or root.start_sector in CHAIN_END:
            return
        self._mini_stream_sectors = self._sector_chain(root.start_sector)
        if self._mini_fat_start in CHAIN_END:
            return
        mini_fat_bytes = self._read_chain(self._mini_fat_start)
        if mini_fat_bytes:
            self._mini_fat = struct.unpack(f"<{len(mini_fat_bytes) // 4}I", mini_fat_bytes)

    def _mini_sector_offset(self, mini_sector: int) -> int:
        position = mini_sector * self.mini_sector_size
        index, within = divmod(position, self.sector_size)
        if index >= len(self._mini_stream_sectors):
            raise CompoundDocumentError("mini sector %d lies outside the mini stream" % mini_sector)
        return self._sector_offset(self._mini_stream_sectors[index]) + within

    def find_entry(self, name: str) -> Optional[DirectoryEntry]:
        """Return the first directory entry called ``name`` (case-sensitive)."""
        return self._by_name.get(name)

    def create_stream(self, source: BinaryIO, entry: DirectoryEntry) -> CompoundStream:
        """Return a lazy view of ``entry`` routed through the mini or regular FAT."""
        if entry.stream_size == 0:
            return CompoundStream(source, (), self.sector_size, 0)
        if entry.is_mini_stream:
            chain = self._chain(self._mini_fat, entry.start_sector, "mini FAT")
            offsets = [self._mini_sector_offset(sector) for sector in chain]
            return CompoundStream(source, offsets, self.mini_sector_size, entry.stream_size)
        offsets = [self._sector_offset(sector) for sector in self._sector_chain(entry.start_sector)]
        return CompoundStream(source, offsets, self.sector_size, entry.stream_size)

    def read_stream(self, source: BinaryIO, entry: DirectoryEntry) -> bytes:
        """Read ``entry`` fully into memory; intended for small metadata streams."""
        stream = self.create_stream(source, entry)
        return stream.read(entry.stream_size) or b""
