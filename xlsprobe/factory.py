"""Entry points that turn a raw file stream into a readable workbook stream."""

import enum
import logging
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Optional

from .cfbf import CompoundDocument
from .config import ReaderConfiguration, resolve_configuration
from .errors import HeaderError, NotFoundError, StructuralError
from .resolver import resolve_encrypted_package, resolve_legacy_workbook
from .sniffer import ContainerKind, classify

logger = logging.getLogger(__name__)


class WorkbookFormat(enum.Enum):
    BINARY = "binary"
    OPEN_XML = "openxml"


@dataclass
class ResolvedWorkbook:
    """A stream ready for a format specific reader."""

    format: WorkbookFormat
    container: ContainerKind
    stream: BinaryIO
    encrypted: bool = False


def _bad_signature() -> HeaderError:
    return HeaderError("invalid file signature")


def resolve_any(stream: BinaryIO, configuration: Optional[ReaderConfiguration] = None) -> ResolvedWorkbook:
    """Resolve BIFF, OOXML or password protected OOXML input."""
    configuration = resolve_configuration(configuration)
    kind = classify(stream)
    if kind == ContainerKind.COMPOUND_DOCUMENT:
        # BIFF5-8 workbook or password protected OpenXml
        document = CompoundDocument(stream)
        workbook = resolve_legacy_workbook(document, stream)
        if workbook is not None:
            return ResolvedWorkbook(WorkbookFormat.BINARY, kind, workbook)
        package = resolve_encrypted_package(document, stream, configuration.resolved_password)
        if package is not None:
            return ResolvedWorkbook(WorkbookFormat.OPEN_XML, kind, package, encrypted=True)
        raise StructuralError("neither a workbook nor an encrypted package was found")
    if kind == ContainerKind.RAW_BIFF:
        return ResolvedWorkbook(WorkbookFormat.BINARY, kind, stream)
    if kind == ContainerKind.ZIP_PACKAGE:
        return ResolvedWorkbook(WorkbookFormat.OPEN_XML, kind, stream)
    raise _bad_signature()


def resolve_binary_only(stream: BinaryIO, configuration: Optional[ReaderConfiguration] = None) -> ResolvedWorkbook:
    """Resolve BIFF input only; OOXML packages are rejected."""
    kind = classify(stream)
    if kind == ContainerKind.COMPOUND_DOCUMENT:
        workbook = resolve_legacy_workbook(CompoundDocument(stream), stream)
        if workbook is None:
            raise StructuralError("no workbook stream was found")
        return ResolvedWorkbook(WorkbookFormat.BINARY, kind, workbook)
    if kind == ContainerKind.RAW_BIFF:
        return ResolvedWorkbook(WorkbookFormat.BINARY, kind, stream)
    raise _bad_signature()


def resolve_openxml_only(stream: BinaryIO, configuration: Optional[ReaderConfiguration] = None) -> ResolvedWorkbook:
    """Resolve plain or password protected OOXML input only."""
    configuration = resolve_configuration(configuration)
    kind = classify(stream)
    if kind == ContainerKind.COMPOUND_DOCUMENT:
        document = CompoundDocument(stream)
        package = resolve_encrypted_package(document, stream, configuration.resolved_password)
        if package is None:
            raise NotFoundError("compound document does not contain an OpenXml package")
        return ResolvedWorkbook(WorkbookFormat.OPEN_XML, kind, package, encrypted=True)
    if kind == ContainerKind.ZIP_PACKAGE:
        return ResolvedWorkbook(WorkbookFormat.OPEN_XML, kind, stream)
    raise _bad_signature()


ReaderConstructor = Callable[[BinaryIO, ReaderConfiguration], Any]


class WorkbookReaderFactory:
    """Hands resolved streams to caller supplied reader constructors."""

    def __init__(self, binary_reader: ReaderConstructor, openxml_reader: ReaderConstructor):
        self._readers = {
            WorkbookFormat.BINARY: binary_reader,
            WorkbookFormat.OPEN_XML: openxml_reader,
        }

    def _construct(self, resolved: ResolvedWorkbook, configuration: Optional[ReaderConfiguration]) -> Any:
        logger.debug("constructing %s reader for %s", resolved.format.value, resolved.container.value)
        return self._readers[resolved.format](resolved.stream, resolve_configuration(configuration))

    def create_reader(self, stream: BinaryIO, configuration: Optional[ReaderConfiguration] = None) -> Any:
        return self._construct(resolve_any(stream, configuration), configuration)

    def create_binary_reader(self, stream: BinaryIO, configuration: Optional[ReaderConfiguration] = None) -> Any:
        return self._construct(resolve_binary_only(stream, configuration), configuration)

    def create_openxml_reader(self, stream: BinaryIO, configuration: Optional[ReaderConfiguration] = None) -> Any:
        return self._construct(resolve_openxml_only(stream, configuration), configuration)
