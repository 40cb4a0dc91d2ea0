from __future__ import annotations

import hashlib
import logging
import re

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from constants import ENCRYPTION_KEY


logger = logging.getLogger(__name__)

HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")


class FieldCipher:
    """AES-256-CBC with an IV derived from the plaintext.

    Equal plaintexts produce equal ciphertexts, so encrypted columns such as
    category and tag names can still be matched with plain equality.
    """

    def __init__(self, key_hex: str):
        self.key_hex = key_hex
        self.key = bytes.fromhex(key_hex)
        if len(self.key) != 32:
            raise ValueError("Encryption key must be 32 bytes (64 hex characters)")

    def _iv(self, text: str) -> bytes:
        return hashlib.sha256((text + self.key_hex).encode("utf-8")).digest()[:16]

    def encrypt(self, text: str) -> str:
        if not isinstance(text, str):
            raise TypeError(f"encrypt() expects str, got {type(text).__name__}")
        iv = self._iv(text)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(text.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self.key), modes.CBC(iv)).encryptor()
        encrypted = encryptor.update(data) + encryptor.finalize()
        return f"{iv.hex()}:{encrypted.hex()}"

    def decrypt(self, value: str) -> str:
        iv_hex, data_hex = value.split(":")
        decryptor = Cipher(
            algorithms.AES(self.key), modes.CBC(bytes.fromhex(iv_hex))
        ).decryptor()
        data = decryptor.update(bytes.fromhex(data_hex)) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")


_cipher = FieldCipher(ENCRYPTION_KEY)


def configure(key_hex: str | None) -> None:
    global _cipher
    if key_hex and key_hex != _cipher.key_hex:
        _cipher = FieldCipher(key_hex)


def encrypt(text) -> str:
    return _cipher.encrypt(str(text))


def is_encrypted(value) -> bool:
    if not value or not isinstance(value, str):
        return False
    parts = value.split(":")
    if len(parts) != 2:
        return False
    return all(HEX_PATTERN.match(part) for part in parts)


def decrypt_field(value):
    """Decrypt a stored column value, returning it untouched when that fails."""
    if not is_encrypted(value):
        return value
    try:
        return _cipher.decrypt(value)
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Field decryption failed: %s", exc)
        return value


def decrypt_int(value) -> int:
    text = decrypt_field(value)
    try:
        return int(str(text).strip())
    except (TypeError, ValueError):
        return 0
