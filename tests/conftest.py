import asyncio

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from e2ee.crypto import KeyStore


class PipeConnection:
    """
    In-memory stand-in for transport.Connection.

    Incoming bytes come from an asyncio.StreamReader (feed it directly, or
    wire two of these together with make_pair()). Everything sent is kept in
    `sent`, and each send_exact() call is recorded in `writes`.
    Must be created inside a running event loop.
    """

    def __init__(self) -> None:
        self.reader = asyncio.StreamReader()
        self.sent = bytearray()
        self.writes = []
        self.peer = None
        self.closed = False

    def feed(self, data: bytes) -> None:
        self.reader.feed_data(data)

    def feed_eof(self) -> None:
        self.reader.feed_eof()

    async def send_exact(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("connection closed")
        self.writes.append(bytes(data))
        self.sent += data
        if self.peer is not None and not self.peer.reader.at_eof():
            self.peer.reader.feed_data(bytes(data))

    async def recv_exact(self, n: int) -> bytes:
        return await self.reader.readexactly(n)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.peer is not None:
            self.peer.feed_eof()


def make_pair():
    a, b = PipeConnection(), PipeConnection()
    a.peer, b.peer = b, a
    return a, b


@pytest.fixture(scope="session")
def rsa_private_keys():
    """Three RSA-2048 keys, generated once for the whole run."""
    return [rsa.generate_private_key(public_exponent=65537, key_size=2048) for _ in range(3)]


@pytest.fixture
def key_stores(rsa_private_keys):
    """Fresh KeyStores (no peer key loaded) over the pre-generated keys."""
    return [KeyStore(private_key=k) for k in rsa_private_keys]
