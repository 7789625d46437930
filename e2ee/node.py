import logging
from typing import Callable, Optional

from . import transport
from .config import Config
from .crypto import KeyStore
from .handshake import Handshake, Role
from .session import DuplexSession, SessionResult

"""
node.py — the two endpoints: ResponderNode (server) and InitiatorNode (client).

Each node owns its own KeyStore for the lifetime of one connection and
walks the same steps:
  transport up -> handshake -> duplex session -> connection closed.

Errors from the handshake propagate to the caller (after the connection is
closed); session outcomes come back as a SessionResult.
"""

LOG = logging.getLogger("e2ee.node")


async def run_session(
    conn: transport.Connection,
    role: Role,
    config: Config,
    source,
    on_message: Callable[[str], None],
    on_lost: Optional[Callable[[str], None]] = None,
    on_ready: Optional[Callable[[], None]] = None,
    keys: Optional[KeyStore] = None,
) -> SessionResult:
    """
    Handshake then chat over an already open connection. Always closes it.

    `on_ready` runs once the session key is in place, right before the
    duplex loop starts (the console uses it to start reading stdin).
    """
    keys = keys if keys is not None else KeyStore(config.oaep_hash)
    try:
        handshake = Handshake(role, conn, keys, max_key_size=config.max_key_size)
        cipher = await handshake.run()
        session = DuplexSession(
            conn,
            cipher,
            exit_command=config.exit_command,
            stop_on_decrypt_error=config.stop_on_decrypt_error,
            max_frame_size=config.max_frame_size,
        )
        if on_ready is not None:
            on_ready()
        return await session.run(source, on_message, on_lost)
    finally:
        await conn.close()


class ResponderNode:
    """
    Server side: listen, take exactly one peer, stop listening, chat.

    The key pair is generated up front, before anyone connects.
    """

    def __init__(self, config: Config, keys: Optional[KeyStore] = None) -> None:
        self.config = config
        self.keys = keys if keys is not None else KeyStore(config.oaep_hash)
        self.listener: Optional[transport.Listener] = None

    @property
    def port(self) -> int:
        if self.listener is None:
            raise RuntimeError("Responder is not listening yet")
        return self.listener.port

    async def start(self) -> None:
        if not self.keys.has_keypair:
            self.keys.generate_keypair()
        self.listener = await transport.listen(self.config.server_host(), self.config.port)
        LOG.info("Listening on %s:%d", *self.listener.address)

    async def serve(
        self,
        source,
        on_message: Callable[[str], None],
        on_lost: Optional[Callable[[str], None]] = None,
        on_ready: Optional[Callable[[], None]] = None,
    ) -> SessionResult:
        if self.listener is None:
            await self.start()
        try:
            conn = await self.listener.accept()
            self.listener.stop_accepting()
            LOG.info("Peer connected from %s", conn.peername)
            return await run_session(
                conn, Role.RESPONDER, self.config, source, on_message,
                on_lost=on_lost, on_ready=on_ready, keys=self.keys,
            )
        finally:
            await self.listener.close()
            self.listener = None


class InitiatorNode:
    """Client side: connect, deliver the session key, chat."""

    def __init__(self, config: Config, keys: Optional[KeyStore] = None) -> None:
        self.config = config
        self.keys = keys if keys is not None else KeyStore(config.oaep_hash)

    async def run(
        self,
        source,
        on_message: Callable[[str], None],
        on_lost: Optional[Callable[[str], None]] = None,
        on_ready: Optional[Callable[[], None]] = None,
    ) -> SessionResult:
        if not self.keys.has_keypair:
            self.keys.generate_keypair()
        host, port = self.config.client_host(), self.config.port
        LOG.info("Connecting to %s:%d", host, port)
        conn = await transport.connect(host, port)
        LOG.info("Connected to %s", conn.peername)
        return await run_session(
            conn, Role.INITIATOR, self.config, source, on_message,
            on_lost=on_lost, on_ready=on_ready, keys=self.keys,
        )
