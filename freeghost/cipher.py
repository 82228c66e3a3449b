"""Authenticated encryption of stored records with AES-256-GCM."""

import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from freeghost.errors import DecryptionError, EncryptionError

NONCE_SIZE = 12


def _key_bytes(key) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    raise TypeError("key must be str or bytes")


class StorageCipher:
    """AES-256-GCM keyed with the SHA3-256 digest of the given key.

    Encrypted blobs are laid out as a 12-byte random nonce followed by the
    ciphertext and its 16-byte authentication tag.
    """

    def __init__(self, key) -> None:
        digest = hashlib.sha3_256(_key_bytes(key)).digest()
        self._aead = AESGCM(digest)

    def encrypt(self, data) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        try:
            ciphertext = self._aead.encrypt(nonce, bytes(data), None)
        except (OverflowError, ValueError) as exc:
            raise EncryptionError(str(exc)) from exc
        return nonce + ciphertext

    def decrypt(self, encrypted_data) -> bytes:
        data = bytes(encrypted_data)
        if len(data) < NONCE_SIZE:
            raise DecryptionError("Invalid encrypted data length")
        nonce, ciphertext = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError):
            raise DecryptionError("authentication failed") from None