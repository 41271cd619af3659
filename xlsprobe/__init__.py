"""xlsprobe: resolve BIFF, OOXML and encrypted OOXML workbook containers."""

from .cfbf import CompoundDocument, DirectoryEntry, EntryType
from .config import ReaderConfiguration
from .encryption import AgileEncryption, StandardEncryption, parse_encryption_info
from .errors import (
    CompoundDocumentError,
    ExcelReaderError,
    HeaderError,
    InvalidPasswordError,
    NotFoundError,
    StructuralError,
    UnsupportedEncryptionError,
)
from .factory import (
    ResolvedWorkbook,
    WorkbookFormat,
    WorkbookReaderFactory,
    resolve_any,
    resolve_binary_only,
    resolve_openxml_only,
)
from .resolver import resolve_encrypted_package, resolve_legacy_workbook
from .sniffer import ContainerKind, classify

__all__ = [
    "AgileEncryption",
    "CompoundDocument",
    "CompoundDocumentError",
    "ContainerKind",
    "DirectoryEntry",
    "EntryType",
    "ExcelReaderError",
    "HeaderError",
    "InvalidPasswordError",
    "NotFoundError",
    "ReaderConfiguration",
    "ResolvedWorkbook",
    "StandardEncryption",
    "StructuralError",
    "UnsupportedEncryptionError",
    "WorkbookFormat",
    "WorkbookReaderFactory",
    "classify",
    "parse_encryption_info",
    "resolve_any",
    "resolve_binary_only",
    "resolve_encrypted_package",
    "resolve_legacy_workbook",
    "resolve_openxml_only",
]
