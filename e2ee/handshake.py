import asyncio
import logging
from enum import Enum
from typing import Optional

from .cipher import SessionCipher
from .crypto import KeyStore, fingerprint
from .errors import E2EEError, HandshakeError, PreconditionError, TruncatedFrame
from .framing import MAX_BLOB_SIZE, read_blob, write_blob

"""
handshake.py — key exchange and session key delivery.

Wire order (Responder = server, Initiator = client):
  1. R -> I  length-prefixed PEM public key
  2. I -> R  length-prefixed PEM public key
  3. I -> R  256-byte RSA-OAEP wrapped session key

Only the Initiator ever generates the session key; the Responder only
unwraps. Neither side checks who the other one is. Any peer that can open
the TCP connection can finish this exchange.
"""

LOG = logging.getLogger("e2ee.handshake")


class Role(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class HandshakeState(str, Enum):
    IDLE = "idle"
    PUBLIC_KEYS_EXCHANGED = "public_keys_exchanged"
    SESSION_KEY_ESTABLISHED = "session_key_established"
    ABORTED = "aborted"


class Handshake:
    """
    Drives stages 1-2 for one role over one connection.

    run() either returns a ready SessionCipher (state SESSION_KEY_ESTABLISHED)
    or raises, leaving the state at ABORTED. A handshake object is single use;
    to try again, open a new connection and build a new Handshake.
    """

    def __init__(
        self,
        role: Role,
        conn,
        keys: Optional[KeyStore] = None,
        max_key_size: int = MAX_BLOB_SIZE,
    ) -> None:
        self.role = Role(role)
        self.conn = conn
        self.keys = keys if keys is not None else KeyStore()
        self.max_key_size = max_key_size
        self._state = HandshakeState.IDLE

    @property
    def state(self) -> HandshakeState:
        return self._state

    async def run(self) -> SessionCipher:
        if self._state is not HandshakeState.IDLE:
            raise PreconditionError(f"Handshake already used (state={self._state.value})")
        try:
            if not self.keys.has_keypair:
                self.keys.generate_keypair()
            if self.role is Role.INITIATOR:
                cipher = await self._run_initiator()
            else:
                cipher = await self._run_responder()
        except TruncatedFrame as exc:
            self._state = HandshakeState.ABORTED
            raise HandshakeError(f"Peer closed the connection during the handshake: {exc}") from exc
        except E2EEError:
            self._state = HandshakeState.ABORTED
            raise
        except (ConnectionError, OSError) as exc:
            self._state = HandshakeState.ABORTED
            raise HandshakeError(f"Transport failed during the handshake: {exc}") from exc
        except BaseException:
            # Cancelled or interrupted part way through.
            self._state = HandshakeState.ABORTED
            raise

        self._state = HandshakeState.SESSION_KEY_ESTABLISHED
        LOG.info("Session key established (%s)", self.role.value)
        return cipher

    # -------------
    # Role paths
    # -------------

    async def _run_initiator(self) -> SessionCipher:
        await self._receive_peer_key()
        await self._send_own_key()
        self._state = HandshakeState.PUBLIC_KEYS_EXCHANGED

        cipher = SessionCipher.generate()
        wrapped = self.keys.wrap_session_key(cipher.key)
        await self.conn.send_exact(wrapped)
        LOG.debug("Sent wrapped session key (%d bytes)", len(wrapped))
        return cipher

    async def _run_responder(self) -> SessionCipher:
        await self._send_own_key()
        await self._receive_peer_key()
        self._state = HandshakeState.PUBLIC_KEYS_EXCHANGED

        try:
            wrapped = await self.conn.recv_exact(self.keys.wrapped_key_size)
        except asyncio.IncompleteReadError as exc:
            raise HandshakeError(
                f"Peer closed before sending the wrapped session key "
                f"({len(exc.partial)} of {self.keys.wrapped_key_size} bytes)"
            ) from exc
        return SessionCipher(self.keys.unwrap_session_key(wrapped))

    # -------------
    # Key exchange
    # -------------

    async def _send_own_key(self) -> None:
        pem = self.keys.export_public_key()
        await write_blob(self.conn, pem, self.max_key_size)
        LOG.debug("Sent public key (sha256 %s)", fingerprint(pem))

    async def _receive_peer_key(self) -> None:
        pem = await read_blob(self.conn, self.max_key_size)
        self.keys.import_peer_public_key(pem)
        LOG.debug("Received peer public key (sha256 %s)", fingerprint(pem))
