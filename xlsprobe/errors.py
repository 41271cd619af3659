"""Exception hierarchy raised while resolving workbook containers."""


class ExcelReaderError(Exception):
    """Base class for every error raised by xlsprobe."""


class HeaderError(ExcelReaderError):
    """Raised when the leading bytes match no known container signature."""


class StructuralError(ExcelReaderError):
    """Raised when a container entry does not have the expected shape."""


class CompoundDocumentError(StructuralError):
    """Raised when the OLE2 header, FAT or directory is corrupt."""


class NotFoundError(ExcelReaderError):
    """Raised when a strict entry point cannot find its required entries."""


class InvalidPasswordError(ExcelReaderError):
    """Raised when the supplied password fails the encryption verifier."""


class UnsupportedEncryptionError(ExcelReaderError):
    """Raised for encryption schemes that are recognised but not implemented."""
