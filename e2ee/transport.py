import asyncio
import logging
from typing import Optional, Tuple

"""
transport.py — plain TCP byte streams on top of asyncio.

The rest of the package only needs four things from the network:
connect, listen, accept, and a Connection that can send or receive an
exact number of bytes. Everything socket-shaped lives here.

recv_exact() raises asyncio.IncompleteReadError when the peer closes early;
the exception's `partial` tells callers how much did arrive, which the frame
codec uses to tell a clean close from a truncated frame.
"""

LOG = logging.getLogger("e2ee.transport")


class Connection:
    """Tiny wrapper to keep reader/writer together with a couple of helpers."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self._closed = False

    @property
    def peername(self) -> Optional[Tuple[str, int]]:
        return self.writer.get_extra_info("peername")

    async def send_exact(self, data: bytes) -> None:
        """Write all of `data`; drain() applies backpressure until it's flushed."""
        self.writer.write(bytes(data))
        await self.writer.drain()

    async def recv_exact(self, n: int) -> bytes:
        return await self.reader.readexactly(n)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            # Peer already tore the socket down; nothing left to flush.
            LOG.debug("Error while closing connection: %s", exc)


class Listener:
    """
    Accept side of the transport. Incoming connections queue up until
    accept() takes them.
    """

    def __init__(self) -> None:
        self._server: Optional[asyncio.AbstractServer] = None
        self._pending: "asyncio.Queue[Connection]" = asyncio.Queue()

    async def start(self, host: str, port: int) -> None:
        self._server = await asyncio.start_server(self._on_connect, host, port)

    def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._pending.put_nowait(Connection(reader, writer))

    @property
    def address(self) -> Tuple[str, int]:
        sock = self._server.sockets[0]
        return sock.getsockname()[:2]

    @property
    def port(self) -> int:
        return self.address[1]

    async def accept(self) -> Connection:
        return await self._pending.get()

    def stop_accepting(self) -> None:
        """Stop listening for new peers; already accepted connections stay up."""
        if self._server is not None:
            self._server.close()

    async def close(self) -> None:
        """Stop listening, drop anyone still waiting in the queue, and wait for the server."""
        if self._server is None:
            return
        self._server.close()
        while not self._pending.empty():
            await self._pending.get_nowait().close()
        await self._server.wait_closed()
        self._server = None


async def connect(host: str, port: int) -> Connection:
    reader, writer = await asyncio.open_connection(host, port)
    return Connection(reader, writer)


async def listen(host: str, port: int) -> Listener:
    listener = Listener()
    await listener.start(host, port)
    return listener
