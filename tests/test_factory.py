import io
import os
import unittest
import zipfile
from unittest import mock

from msoffcrypto.method.ecma376_agile import ECMA376Agile

from xlsprobe.config import ReaderConfiguration
from xlsprobe.errors import (
    HeaderError,
    InvalidPasswordError,
    NotFoundError,
    StructuralError,
)
from xlsprobe.factory import (
    WorkbookFormat,
    WorkbookReaderFactory,
    resolve_any,
    resolve_binary_only,
    resolve_openxml_only,
)
from xlsprobe.sniffer import ContainerKind

from builders import (
    BIFF8_PROBE,
    build_compound_document,
    build_encrypted_workbook,
    build_zip_package,
    encrypt_standard,
)

ENTRY_POINTS = (resolve_any, resolve_binary_only, resolve_openxml_only)


class SignatureTest(unittest.TestCase):
    def test_unrecognised_bytes_fail_everywhere(self) -> None:
        for data in (b"", b"%PDF-1.7\n", b"\x00" * 64):
            for resolve in ENTRY_POINTS:
                with self.subTest(data=data, resolve=resolve.__name__):
                    with self.assertRaises(HeaderError):
                        resolve(io.BytesIO(data))

    def test_raw_biff(self) -> None:
        source = io.BytesIO(BIFF8_PROBE + b"\x00" * 32)
        for resolve in (resolve_any, resolve_binary_only):
            resolved = resolve(source)
            self.assertIs(source, resolved.stream)
            self.assertEqual(WorkbookFormat.BINARY, resolved.format)
            self.assertEqual(ContainerKind.RAW_BIFF, resolved.container)
        with self.assertRaises(HeaderError):
            resolve_openxml_only(source)

    def test_zip_package(self) -> None:
        source = io.BytesIO(build_zip_package())
        for resolve in (resolve_any, resolve_openxml_only):
            resolved = resolve(source)
            self.assertIs(source, resolved.stream)
            self.assertEqual(WorkbookFormat.OPEN_XML, resolved.format)
            self.assertFalse(resolved.encrypted)
        with self.assertRaises(HeaderError):
            resolve_binary_only(source)


class CompoundWorkbookTest(unittest.TestCase):
    def test_workbook_stream(self) -> None:
        payload = BIFF8_PROBE + os.urandom(5000)
        for resolve in (resolve_any, resolve_binary_only):
            source = io.BytesIO(build_compound_document({"Workbook": payload}))
            resolved = resolve(source)
            self.assertEqual(WorkbookFormat.BINARY, resolved.format)
            self.assertEqual(ContainerKind.COMPOUND_DOCUMENT, resolved.container)
            self.assertEqual(payload, resolved.stream.read())

    def test_book_alias(self) -> None:
        for resolve in (resolve_any, resolve_binary_only):
            source = io.BytesIO(build_compound_document({"Book": BIFF8_PROBE}))
            self.assertEqual(BIFF8_PROBE, resolve(source).stream.read())

    def test_openxml_only_ignores_legacy_workbook(self) -> None:
        source = io.BytesIO(build_compound_document({"Workbook": BIFF8_PROBE}))
        with self.assertRaises(NotFoundError):
            resolve_openxml_only(source)

    def test_empty_compound_document(self) -> None:
        data = build_compound_document({"\x05SummaryInformation": b"\x00" * 48})
        with self.assertRaises(StructuralError):
            resolve_any(io.BytesIO(data))
        with self.assertRaises(StructuralError):
            resolve_binary_only(io.BytesIO(data))
        with self.assertRaises(NotFoundError):
            resolve_openxml_only(io.BytesIO(data))


class EncryptedWorkbookTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.plaintext = build_zip_package({"xl/workbook.xml": "<workbook>" + os.urandom(6000).hex() + "</workbook>"})
        cls.standard = build_encrypted_workbook(cls.plaintext, "letmein")
        cls.agile = build_encrypted_workbook(cls.plaintext, "letmein", scheme="agile")

    def test_round_trip(self) -> None:
        configuration = ReaderConfiguration(password="letmein")
        for data in (self.standard, self.agile):
            for resolve in (resolve_any, resolve_openxml_only):
                with self.subTest(resolve=resolve.__name__):
                    resolved = resolve(io.BytesIO(data), configuration)
                    self.assertEqual(WorkbookFormat.OPEN_XML, resolved.format)
                    self.assertTrue(resolved.encrypted)
                    self.assertEqual(self.plaintext, resolved.stream.read())

    def test_password_is_spun_once_per_resolution(self) -> None:
        configuration = ReaderConfiguration(password="letmein")
        with mock.patch.object(
            ECMA376Agile,
            "_derive_iterated_hash_from_password",
            wraps=ECMA376Agile._derive_iterated_hash_from_password,
        ) as derive:
            resolve_openxml_only(io.BytesIO(self.agile), configuration)
        derive.assert_called_once()

    def test_decrypted_stream_is_a_valid_package(self) -> None:
        resolved = resolve_any(io.BytesIO(self.agile), ReaderConfiguration(password="letmein"))
        with zipfile.ZipFile(resolved.stream) as archive:
            self.assertIn("xl/workbook.xml", archive.namelist())

    def test_wrong_password(self) -> None:
        configuration = ReaderConfiguration(password="nope")
        for resolve in (resolve_any, resolve_openxml_only):
            with self.subTest(resolve=resolve.__name__):
                with self.assertRaises(InvalidPasswordError):
                    resolve(io.BytesIO(self.agile), configuration)

    def test_missing_password_is_empty_password(self) -> None:
        with self.assertRaises(InvalidPasswordError):
            resolve_openxml_only(io.BytesIO(self.agile), ReaderConfiguration(password=None))

    def test_binary_only_rejects_encrypted_package(self) -> None:
        with self.assertRaises(StructuralError):
            resolve_binary_only(io.BytesIO(self.standard))

    def test_half_encrypted_package_skips_key_derivation(self) -> None:
        info, _ = encrypt_standard(b"payload", "pw")
        source = io.BytesIO(build_compound_document({"EncryptionInfo": info}))
        with mock.patch("xlsprobe.resolver.parse_encryption_info") as parse:
            with self.assertRaises(NotFoundError):
                resolve_openxml_only(source, ReaderConfiguration(password="pw"))
        parse.assert_not_called()


class WorkbookReaderFactoryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.binary_reader = mock.Mock(name="binary_reader")
        self.openxml_reader = mock.Mock(name="openxml_reader")
        self.factory = WorkbookReaderFactory(self.binary_reader, self.openxml_reader)

    def test_dispatches_binary(self) -> None:
        source = io.BytesIO(BIFF8_PROBE)
        reader = self.factory.create_reader(source)
        self.assertIs(self.binary_reader.return_value, reader)
        self.binary_reader.assert_called_once_with(source, ReaderConfiguration())
        self.openxml_reader.assert_not_called()

    def test_dispatches_openxml_with_configuration(self) -> None:
        source = io.BytesIO(build_zip_package())
        configuration = ReaderConfiguration(password="pw")
        self.factory.create_openxml_reader(source, configuration)
        self.openxml_reader.assert_called_once_with(source, configuration)

    def test_strict_binary_reader(self) -> None:
        with self.assertRaises(HeaderError):
            self.factory.create_binary_reader(io.BytesIO(build_zip_package()))
        self.binary_reader.assert_not_called()


if __name__ == "__main__":
    unittest.main()
