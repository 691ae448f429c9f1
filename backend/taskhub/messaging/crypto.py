"""Content-at-rest obfuscation for direct messages.

AES-256-CBC with PKCS7 padding. The key is the SHA-256 digest of the
configured secret, and the stored form is ``hex(iv):hex(ciphertext)``.
This is transport/at-rest obfuscation only, not end-to-end encryption.
"""
from __future__ import annotations

import hashlib
import logging
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger(__name__)

IV_LEN = 16


class ContentCipher:
    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Encryption secret must not be empty")
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LEN)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ct = encryptor.update(data) + encryptor.finalize()
        return f"{iv.hex()}:{ct.hex()}"

    def decrypt(self, stored: str) -> str:
        """Decrypt ``stored``; values not in ``iv:ct`` form come back unchanged.

        Rows written before encryption was enabled are plain text, so any
        failure to parse or decrypt returns the input as-is.
        """
        if not stored or ":" not in stored:
            return stored
        iv_hex, _, ct_hex = stored.partition(":")
        try:
            iv = bytes.fromhex(iv_hex)
            ct = bytes.fromhex(ct_hex)
            if len(iv) != IV_LEN or not ct:
                return stored
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            data = decryptor.update(ct) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")
        except ValueError as e:
            # UnicodeDecodeError is a ValueError too
            logger.debug(f"[Cipher] Returning undecryptable content unchanged: {e}")
            return stored
