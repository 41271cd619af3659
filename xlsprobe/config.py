"""Reader configuration shared by the resolution entry points."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReaderConfiguration:
    """Options consulted while resolving a workbook stream.

    ``password`` is only read on the encrypted package path. ``None`` and the
    empty string are treated the same way.
    """

    password: Optional[str] = ""

    @property
    def resolved_password(self) -> str:
        return self.password if self.password is not None else ""


DEFAULT_CONFIGURATION = ReaderConfiguration()


def resolve_configuration(configuration: Optional[ReaderConfiguration]) -> ReaderConfiguration:
    return configuration if configuration is not None else DEFAULT_CONFIGURATION
