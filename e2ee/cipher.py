import os
from typing import Tuple

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import DecryptionError

"""
cipher.py — AES-256-CBC for chat traffic once the handshake is done.

- One key per connection, set once, never changed (no rekeying).
- Every encrypt() draws a brand-new 16-byte IV; reusing one would let equal
  message prefixes show up as equal ciphertext prefixes.
- PKCS#7 padding. There is no MAC: a tampered frame shows up as a padding
  error or as garbled text, never as a verified failure.
"""

KEY_SIZE = 32
IV_SIZE = 16
BLOCK_SIZE = algorithms.AES.block_size  # bits


class SessionCipher:
    """Symmetric context bound to one connection's session key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"Session key must be {KEY_SIZE} bytes, got {len(key)}")
        self._key = bytes(key)

    @classmethod
    def generate(cls) -> "SessionCipher":
        """Fresh random 256-bit key."""
        return cls(os.urandom(KEY_SIZE))

    @property
    def key(self) -> bytes:
        return self._key

    def encrypt(self, plaintext: bytes) -> Tuple[bytes, bytes]:
        """Return (iv, ciphertext) for one message."""
        iv = os.urandom(IV_SIZE)
        return iv, self._encrypt(plaintext, iv)

    def _encrypt(self, plaintext: bytes, iv: bytes) -> bytes:
        padder = padding.PKCS7(BLOCK_SIZE).padder()
        padded = padder.update(bytes(plaintext)) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def decrypt(self, ciphertext: bytes, iv: bytes) -> bytes:
        """
        Reverse of encrypt(). Raises DecryptionError when the message can't be
        recovered: wrong key, damaged IV, or damaged ciphertext.
        """
        if len(iv) != IV_SIZE:
            raise DecryptionError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
        if not ciphertext or len(ciphertext) % (BLOCK_SIZE // 8):
            raise DecryptionError(
                f"Ciphertext length {len(ciphertext)} is not a positive multiple of the block size"
            )
        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(bytes(iv))).decryptor()
        padded = decryptor.update(bytes(ciphertext)) + decryptor.finalize()
        unpadder = padding.PKCS7(BLOCK_SIZE).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise DecryptionError("Invalid padding after decryption") from exc
