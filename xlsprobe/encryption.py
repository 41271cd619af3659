"""Parses ECMA-376 ``EncryptionInfo`` streams and derives package keys.

Two password schemes are understood:

* Standard encryption (CryptoAPI header, AES-ECB, SHA-1 key derivation).
* Agile encryption (XML descriptor, AES-CBC, configurable hash).

Password hashing and verifier checks are delegated to ``msoffcrypto``; this
module only validates the descriptors and wires the lazy package stream.
The password is spun exactly once per resolution: ``hash_password`` feeds
both ``verify_password`` and ``generate_secret_key``.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import struct
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import BinaryIO, Dict, Final, Union

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from msoffcrypto.method.ecma376_agile import ECMA376Agile
from msoffcrypto.method.ecma376_standard import ECMA376Standard

from .errors import StructuralError, UnsupportedEncryptionError
from .package_stream import EncryptedPackageStream

logger = logging.getLogger(__name__)

ENCRYPTION_NS: Final[str] = "http://schemas.microsoft.com/office/2006/encryption"
PASSWORD_KEY_NS: Final[str] = "http://schemas.microsoft.com/office/2006/keyEncryptor/password"

FLAG_AES: Final[int] = 0x20

ALG_RC4: Final[int] = 0x6801
ALG_AES_128: Final[int] = 0x660E
ALG_AES_192: Final[int] = 0x660F
ALG_AES_256: Final[int] = 0x6610
ALG_HASH_SHA1: Final[int] = 0x8004
AES_KEY_BITS: Final[Dict[int, int]] = {ALG_AES_128: 128, ALG_AES_192: 192, ALG_AES_256: 256}
PROVIDER_AES: Final[int] = 0x18

BLOCK_KEY_VERIFIER_INPUT: Final[bytes] = bytes.fromhex("fea7d2763b4b9e79")
BLOCK_KEY_VERIFIER_VALUE: Final[bytes] = bytes.fromhex("d7aa0f6d3061344e")
BLOCK_KEY_SECRET_KEY: Final[bytes] = bytes.fromhex("146e0be7abacd0d6")

AGILE_HASHES: Final[Dict[str, str]] = {
    "SHA1": "sha1",
    "SHA-1": "sha1",
    "SHA256": "sha256",
    "SHA384": "sha384",
    "SHA512": "sha512",
}


def _aes_decrypt(key: bytes, data: bytes, mode) -> bytes:
    decryptor = Cipher(algorithms.AES(key), mode).decryptor()
    return decryptor.update(data) + decryptor.finalize()


def _fit(value: bytes, length: int) -> bytes:
    """Truncate ``value`` or pad it with 0x36 up to ``length`` bytes."""
    if len(value) >= length:
        return value[:length]
    return value + b"\x36" * (length - len(value))


@dataclass(frozen=True)
class StandardEncryption:
    """Standard (CryptoAPI) AES encryption descriptor."""

    alg_id: int
    alg_id_hash: int
    key_bits: int
    provider_type: int
    csp_name: str
    salt: bytes
    encrypted_verifier: bytes
    verifier_hash_size: int
    encrypted_verifier_hash: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> "StandardEncryption":
        try:
            flags, header_size = struct.unpack_from("<2I", data, 4)
            header = data[12 : 12 + header_size]
            if len(header) != header_size or header_size < 32:
                raise StructuralError("encryption header is truncated")
            _, _, alg_id, alg_id_hash, key_bits, provider_type = struct.unpack_from("<6I", header, 0)
            csp_name = header[32:].decode("utf-16le", errors="ignore").rstrip("\x00")
            offset = 12 + header_size
            salt_size = struct.unpack_from("<I", data, offset)[0]
            offset += 4
            salt = data[offset : offset + salt_size]
            offset += salt_size
            encrypted_verifier = data[offset : offset + 16]
            offset += 16
            verifier_hash_size = struct.unpack_from("<I", data, offset)[0]
            encrypted_verifier_hash = data[offset + 4 :]
        except struct.error as exc:
            raise StructuralError("standard encryption info is truncated") from exc
        if alg_id == ALG_RC4 or (not flags & FLAG_AES and alg_id not in AES_KEY_BITS):
            raise UnsupportedEncryptionError("only AES standard encryption is supported")
        if alg_id == 0:
            alg_id = ALG_AES_128
        if alg_id not in AES_KEY_BITS:
            raise UnsupportedEncryptionError("unsupported cipher algorithm 0x%04X" % alg_id)
        if alg_id_hash not in (0, ALG_HASH_SHA1):
            raise UnsupportedEncryptionError("unsupported hash algorithm 0x%04X" % alg_id_hash)
        key_bits = key_bits or AES_KEY_BITS[alg_id]
        if key_bits != AES_KEY_BITS[alg_id]:
            raise StructuralError("key size %d does not match cipher 0x%04X" % (key_bits, alg_id))
        if len(salt) != salt_size or len(encrypted_verifier) != 16:
            raise StructuralError("encryption verifier is truncated")
        if not encrypted_verifier_hash or len(encrypted_verifier_hash) % 16:
            raise StructuralError("encrypted verifier hash is not block aligned")
        return cls(
            alg_id,
            ALG_HASH_SHA1,
            key_bits,
            provider_type or PROVIDER_AES,
            csp_name,
            salt,
            encrypted_verifier,
            verifier_hash_size,
            encrypted_verifier_hash,
        )

    def hash_password(self, password: str) -> bytes:
        """Run the 50000-round SHA-1 derivation; the result is the AES key."""
        return ECMA376Standard.makekey_from_password(
            password,
            self.alg_id,
            self.alg_id_hash,
            self.provider_type,
            self.key_bits,
            len(self.salt),
            self.salt,
        )

    def verify_password(self, password_hash: bytes) -> bool:
        return ECMA376Standard.verifykey(password_hash, self.encrypted_verifier, self.encrypted_verifier_hash)

    def generate_secret_key(self, password_hash: bytes) -> bytes:
        return password_hash

    def create_encrypted_package_stream(self, package: BinaryIO, secret_key: bytes) -> EncryptedPackageStream:
        def decrypt_segment(index: int, ciphertext: bytes) -> bytes:
            return _aes_decrypt(secret_key, ciphertext, modes.ECB())

        return EncryptedPackageStream(package, decrypt_segment)


@dataclass(frozen=True)
class AgileCipherParams:
    salt: bytes
    hash_name: str
    key_bits: int
    block_size: int
    hash_size: int

    @property
    def hash_algorithm(self) -> str:
        # msoffcrypto keys its hash table by the upper-case name
        return self.hash_name.upper()

    @classmethod
    def from_element(cls, element: ET.Element) -> "AgileCipherParams":
        cipher = element.get("cipherAlgorithm", "")
        chaining = element.get("cipherChaining", "")
        if cipher != "AES":
            raise UnsupportedEncryptionError("unsupported agile cipher %r" % cipher)
        if chaining != "ChainingModeCBC":
            raise UnsupportedEncryptionError("unsupported cipher chaining %r" % chaining)
        hash_name = AGILE_HASHES.get(element.get("hashAlgorithm", ""))
        if hash_name is None:
            raise UnsupportedEncryptionError(
                "unsupported hash algorithm %r" % element.get("hashAlgorithm")
            )
        key_bits = _int_attribute(element, "keyBits")
        if key_bits not in (128, 192, 256):
            raise StructuralError("invalid AES key size %d" % key_bits)
        block_size = _int_attribute(element, "blockSize")
        if block_size != 16:
            raise StructuralError("invalid AES block size %d" % block_size)
        return cls(
            salt=_binary_attribute(element, "saltValue"),
            hash_name=hash_name,
            key_bits=key_bits,
            block_size=block_size,
            hash_size=_int_attribute(element, "hashSize"),
        )


def _attribute(element: ET.Element, name: str) -> str:
    value = element.get(name)
    if value is None:
        raise StructuralError("<%s> lacks the %r attribute" % (element.tag, name))
    return value


def _int_attribute(element: ET.Element, name: str) -> int:
    try:
        return int(_attribute(element, name))
    except ValueError as exc:
        raise StructuralError("attribute %r is not an integer" % name) from exc


def _binary_attribute(element: ET.Element, name: str) -> bytes:
    try:
        return base64.b64decode(_attribute(element, name), validate=True)
    except binascii.Error as exc:
        raise StructuralError("attribute %r is not valid base64" % name) from exc


def _encrypted_attribute(element: ET.Element, name: str) -> bytes:
    value = _binary_attribute(element, name)
    if not value or len(value) % 16:
        raise StructuralError("attribute %r is not block aligned" % name)
    return value


@dataclass(frozen=True)
class AgileEncryption:
    """Agile encryption descriptor with a password key encryptor."""

    key_data: AgileCipherParams
    password_key: AgileCipherParams
    spin_count: int
    encrypted_verifier_hash_input: bytes
    encrypted_verifier_hash_value: bytes
    encrypted_key_value: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> "AgileEncryption":
        try:
            root = ET.fromstring(data[8:])
        except ET.ParseError as exc:
            raise StructuralError("agile encryption descriptor is not valid XML") from exc
        key_data = root.find(f"{{{ENCRYPTION_NS}}}keyData")
        encrypted_key = root.find(f".//{{{PASSWORD_KEY_NS}}}encryptedKey")
        if key_data is None:
            raise StructuralError("agile encryption descriptor has no keyData")
        if encrypted_key is None:
            raise UnsupportedEncryptionError("agile encryption has no password key encryptor")
        return cls(
            key_data=AgileCipherParams.from_element(key_data),
            password_key=AgileCipherParams.from_element(encrypted_key),
            spin_count=_int_attribute(encrypted_key, "spinCount"),
            encrypted_verifier_hash_input=_encrypted_attribute(encrypted_key, "encryptedVerifierHashInput"),
            encrypted_verifier_hash_value=_encrypted_attribute(encrypted_key, "encryptedVerifierHashValue"),
            encrypted_key_value=_encrypted_attribute(encrypted_key, "encryptedKeyValue"),
        )

    def hash_password(self, password: str) -> bytes:
        """Return the spun password hash shared by every block key."""
        params = self.password_key
        return ECMA376Agile._derive_iterated_hash_from_password(
            password, params.salt, params.hash_algorithm, self.spin_count
        ).digest()

    def _decrypt_with_block_key(self, password_hash: bytes, block_key: bytes, data: bytes) -> bytes:
        params = self.password_key
        key = ECMA376Agile._derive_encryption_key(password_hash, block_key, params.hash_algorithm, params.key_bits)
        iv = _fit(params.salt, params.block_size)
        return _aes_decrypt(_fit(key, params.key_bits // 8), data, modes.CBC(iv))

    def verify_password(self, password_hash: bytes) -> bool:
        params = self.password_key
        verifier_input = self._decrypt_with_block_key(
            password_hash, BLOCK_KEY_VERIFIER_INPUT, self.encrypted_verifier_hash_input
        )[: len(params.salt)]
        actual = hashlib.new(params.hash_name, verifier_input).digest()
        expected = self._decrypt_with_block_key(
            password_hash, BLOCK_KEY_VERIFIER_VALUE, self.encrypted_verifier_hash_value
        )[: len(actual)]
        return hmac.compare_digest(actual, expected)

    def generate_secret_key(self, password_hash: bytes) -> bytes:
        secret_key = self._decrypt_with_block_key(password_hash, BLOCK_KEY_SECRET_KEY, self.encrypted_key_value)
        return secret_key[: self.key_data.key_bits // 8]

    def create_encrypted_package_stream(self, package: BinaryIO, secret_key: bytes) -> EncryptedPackageStream:
        key_data = self.key_data

        def decrypt_segment(index: int, ciphertext: bytes) -> bytes:
            iv = hashlib.new(key_data.hash_name, key_data.salt + struct.pack("<I", index)).digest()
            return _aes_decrypt(secret_key, ciphertext, modes.CBC(_fit(iv, key_data.block_size)))

        return EncryptedPackageStream(package, decrypt_segment)


EncryptionDescriptor = Union[StandardEncryption, AgileEncryption]


def parse_encryption_info(data: bytes) -> EncryptionDescriptor:
    """Build the descriptor matching the version header of ``data``."""
    if len(data) < 8:
        raise StructuralError("encryption info is truncated")
    major, minor = struct.unpack_from("<2H", data, 0)
    if minor == 2 and major in (2, 3, 4):
        descriptor: EncryptionDescriptor = StandardEncryption.from_bytes(data)
    elif major == 4 and minor == 4:
        descriptor = AgileEncryption.from_bytes(data)
    elif minor == 3 and major in (3, 4):
        raise UnsupportedEncryptionError("extensible encryption is not supported")
    else:
        raise UnsupportedEncryptionError("unknown encryption version %d.%d" % (major, minor))
    logger.debug("parsed %s descriptor (version %d.%d)", type(descriptor).__name__, major, minor)
    return descriptor
