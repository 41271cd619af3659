"""Locates the workbook payload inside an OLE2 compound document."""

import logging
from typing import BinaryIO, Final, Optional

from .cfbf import CompoundDocument, EntryType
from .encryption import parse_encryption_info
from .errors import InvalidPasswordError, StructuralError

logger = logging.getLogger(__name__)

ENTRY_WORKBOOK: Final[str] = "Workbook"
ENTRY_BOOK: Final[str] = "Book"
ENTRY_ENCRYPTED_PACKAGE: Final[str] = "EncryptedPackage"
ENTRY_ENCRYPTION_INFO: Final[str] = "EncryptionInfo"


def resolve_legacy_workbook(document: CompoundDocument, source: BinaryIO) -> Optional[BinaryIO]:
    """Return the BIFF workbook stream, or ``None`` when the document has none.

    ``Workbook`` (BIFF8) is preferred over ``Book`` (BIFF5). A matching entry
    that is not a stream is a hard error rather than a miss.
    """
    entry = document.find_entry(ENTRY_WORKBOOK) or document.find_entry(ENTRY_BOOK)
    if entry is None:
        logger.debug("no workbook entry in compound document")
        return None
    if entry.entry_type != EntryType.STREAM:
        raise StructuralError("workbook entry %r is not a stream" % entry.name)
    logger.debug("using workbook entry %r (%d bytes)", entry.name, entry.stream_size)
    return document.create_stream(source, entry)


def resolve_encrypted_package(
    document: CompoundDocument, source: BinaryIO, password: Optional[str]
) -> Optional[BinaryIO]:
    """Return a decrypting stream over an encrypted OOXML package.

    Both ``EncryptedPackage`` and ``EncryptionInfo`` must be present, otherwise
    ``None`` is returned. The password is hashed once; that hash is checked
    against the verifier before the package key is unwrapped or the package
    stream is touched.
    """
    package_entry = document.find_entry(ENTRY_ENCRYPTED_PACKAGE)
    info_entry = document.find_entry(ENTRY_ENCRYPTION_INFO)
    if package_entry is None or info_entry is None:
        logger.debug("compound document holds no encrypted package")
        return None

    password = password if password is not None else ""
    encryption = parse_encryption_info(document.read_stream(source, info_entry))
    password_hash = encryption.hash_password(password)
    if not encryption.verify_password(password_hash):
        raise InvalidPasswordError("the password does not unlock this workbook")

    secret_key = encryption.generate_secret_key(password_hash)
    package = document.create_stream(source, package_entry)
    return encryption.create_encrypted_package_stream(package, secret_key)
