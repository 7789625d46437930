"""
crypto.py — the RSA side of the handshake.

Why this exists:
- Keep all RSA bits in one place so the handshake can call
  `generate/export/import/wrap/unwrap` without worrying about padding details.
- Enforce RSA-2048 everywhere: the wrapped session key goes on the wire as a
  fixed 256-byte block, so a peer key of any other size would break framing.

Notes:
- Public keys travel as PEM text (PKCS#1 "RSA PUBLIC KEY"); we also accept
  SubjectPublicKeyInfo PEM when importing.
- OAEP defaults to SHA-1 for both the digest and MGF1, which is what OpenSSL's
  RSA_PKCS1_OAEP_PADDING uses. SHA-256 is available if both peers agree.
- The private key never leaves the KeyStore.
"""

import hashlib
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import (
    InvalidKeyEncoding,
    KeyGenerationError,
    PeerKeyMissing,
    PreconditionError,
    UnwrapError,
)

RSA_KEY_BITS = 2048
RSA_PUBLIC_EXPONENT = 65537
WRAPPED_KEY_SIZE = RSA_KEY_BITS // 8  # 256 bytes on the wire
SESSION_KEY_SIZE = 32

OAEP_HASHES = {
    "sha1": hashes.SHA1,
    "sha256": hashes.SHA256,
}


def oaep_padding(name: str = "sha1") -> padding.OAEP:
    """Build the OAEP padding object for a digest name ('sha1' or 'sha256')."""
    try:
        algo = OAEP_HASHES[name.lower()]
    except KeyError:
        raise ValueError(f"Unsupported OAEP hash: {name!r}") from None
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=algo()),
        algorithm=algo(),
        label=None,
    )


def fingerprint(pem: bytes) -> str:
    """SHA-256 over the PEM text, colon-free hex. For logs only."""
    return hashlib.sha256(pem).hexdigest()


class KeyStore:
    """
    One endpoint's RSA material for one connection.

    Holds the local key pair (created once) and at most one peer public key.
    Wrap uses the peer key; unwrap uses our private key. Nothing here is
    shared between connections.
    """

    def __init__(self, oaep_hash: str = "sha1", private_key: Optional[rsa.RSAPrivateKey] = None) -> None:
        """
        Args:
            oaep_hash: 'sha1' (default, OpenSSL's OAEP default) or 'sha256'.
            private_key: an already generated in-memory RSA-2048 key to use
                instead of calling generate_keypair() (handy in tests, where
                key generation dominates run time).
        """
        self._padding = oaep_padding(oaep_hash)
        self.oaep_hash = oaep_hash.lower()
        if private_key is not None and private_key.key_size != RSA_KEY_BITS:
            raise ValueError(f"Private key must be RSA-{RSA_KEY_BITS}")
        self._private_key: Optional[rsa.RSAPrivateKey] = private_key
        self._peer_key: Optional[rsa.RSAPublicKey] = None

    @property
    def has_keypair(self) -> bool:
        return self._private_key is not None

    @property
    def has_peer_key(self) -> bool:
        return self._peer_key is not None

    @property
    def wrapped_key_size(self) -> int:
        return WRAPPED_KEY_SIZE

    # -------------
    # RSA key utils
    # -------------

    def generate_keypair(self) -> None:
        """Generate a fresh RSA-2048 pair (public exponent 65537)."""
        if self._private_key is not None:
            raise PreconditionError("Key pair already generated for this endpoint")
        try:
            self._private_key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT,
                key_size=RSA_KEY_BITS,
            )
        except Exception as exc:
            raise KeyGenerationError(f"RSA key generation failed: {exc}") from exc

    def export_public_key(self) -> bytes:
        """Our public key as PKCS#1 PEM bytes."""
        if self._private_key is None:
            raise PreconditionError("No key pair yet; call generate_keypair() first")
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.PKCS1,
        )

    def import_peer_public_key(self, pem: bytes) -> None:
        """
        Parse and keep the remote public key.

        Raises InvalidKeyEncoding for anything that isn't a 2048-bit RSA
        public key in PEM form. Loading twice is a caller bug.
        """
        if self._peer_key is not None:
            raise PreconditionError("Peer public key already loaded")
        try:
            key = serialization.load_pem_public_key(bytes(pem))
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise InvalidKeyEncoding(f"Could not decode peer public key: {exc}") from exc

        if not isinstance(key, rsa.RSAPublicKey):
            raise InvalidKeyEncoding("Peer public key is not an RSA key")
        if key.key_size != RSA_KEY_BITS:
            raise InvalidKeyEncoding(
                f"Peer public key is RSA-{key.key_size}, expected RSA-{RSA_KEY_BITS}"
            )
        self._peer_key = key

    # ---------------------------
    # Session key wrap and unwrap
    # ---------------------------

    def wrap_session_key(self, session_key: bytes) -> bytes:
        """Encrypt the 32-byte session key under the peer's public key (RSA-OAEP)."""
        if self._peer_key is None:
            raise PeerKeyMissing("Cannot wrap the session key: no peer public key loaded")
        if len(session_key) != SESSION_KEY_SIZE:
            raise ValueError(f"Session key must be {SESSION_KEY_SIZE} bytes")
        return self._peer_key.encrypt(bytes(session_key), self._padding)

    def unwrap_session_key(self, wrapped: bytes) -> bytes:
        """
        Recover the session key with our private key.

        Any failure (wrong key, corrupted bytes, wrong OAEP hash, a secret of
        the wrong size) raises UnwrapError instead of handing back garbage.
        """
        if self._private_key is None:
            raise PreconditionError("No key pair yet; call generate_keypair() first")
        if len(wrapped) != WRAPPED_KEY_SIZE:
            raise UnwrapError(
                f"Wrapped key must be {WRAPPED_KEY_SIZE} bytes, got {len(wrapped)}"
            )
        try:
            key = self._private_key.decrypt(bytes(wrapped), self._padding)
        except ValueError as exc:
            raise UnwrapError("Session key unwrap failed (bad padding or wrong key)") from exc
        if len(key) != SESSION_KEY_SIZE:
            raise UnwrapError(
                f"Unwrapped session key is {len(key)} bytes, expected {SESSION_KEY_SIZE}"
            )
        return key
