import asyncio

from conftest import PipeConnection, make_pair
from e2ee.cipher import SessionCipher
from e2ee.framing import LENGTH_STRUCT, encode_frame, read_frame
from e2ee.session import CloseReason, DuplexSession, QueueSource


def _source(*messages):
    src = QueueSource()
    for m in messages:
        src.put(m)
    return src


def test_exit_command_ends_send_path_without_a_frame():
    cipher = SessionCipher.generate()

    async def go():
        conn = PipeConnection()
        session = DuplexSession(conn, cipher)
        result = await session.run(_source("hello", "world", "/exit", "never sent"), print)
        return conn, result

    conn, result = asyncio.run(go())
    assert result.reason is CloseReason.LOCAL_EXIT
    assert result.ok
    assert result.sent == 2

    async def decode():
        reader = PipeConnection()
        reader.feed(bytes(conn.sent))
        reader.feed_eof()
        out = []
        while (f := await read_frame(reader)) is not None:
            out.append(cipher.decrypt(f.ciphertext, f.iv))
        return out

    assert asyncio.run(decode()) == [b"hello", b"world"]


def test_source_exhausted_counts_as_local_exit():
    async def go():
        conn = PipeConnection()
        return await DuplexSession(conn, SessionCipher.generate()).run(_source("a", None), print)

    result = asyncio.run(go())
    assert result.reason is CloseReason.LOCAL_EXIT
    assert result.sent == 1


def test_custom_exit_command():
    async def go():
        conn = PipeConnection()
        session = DuplexSession(conn, SessionCipher.generate(), exit_command="/bye")
        return await session.run(_source("/exit", "/bye"), print)

    result = asyncio.run(go())
    assert result.sent == 1


def test_receive_path_delivers_in_order_then_peer_closed():
    cipher = SessionCipher.generate()
    received = []

    async def go():
        conn = PipeConnection()
        for text in ("one", "two", "three"):
            conn.feed(encode_frame(*cipher.encrypt(text.encode())))
        conn.feed_eof()
        # Source never yields: only the receive path can end the session.
        return await DuplexSession(conn, cipher).run(QueueSource(), received.append)

    result = asyncio.run(go())
    assert received == ["one", "two", "three"]
    assert result.reason is CloseReason.PEER_CLOSED
    assert result.ok
    assert result.received == 3


def test_truncated_frame_reported():
    async def go():
        conn = PipeConnection()
        conn.feed(b"\x01" * 16 + LENGTH_STRUCT.pack(32) + b"\x02" * 10)
        conn.feed_eof()
        return await DuplexSession(conn, SessionCipher.generate()).run(QueueSource(), print)

    result = asyncio.run(go())
    assert result.reason is CloseReason.TRUNCATED_FRAME
    assert not result.ok
    assert result.detail


def test_oversized_frame_reported():
    async def go():
        conn = PipeConnection()
        conn.feed(b"\x01" * 16 + LENGTH_STRUCT.pack(4096))
        session = DuplexSession(conn, SessionCipher.generate(), max_frame_size=1024)
        return await session.run(QueueSource(), print)

    assert asyncio.run(go()).reason is CloseReason.FRAME_TOO_LARGE


def test_decrypt_failure_stops_session_by_default():
    cipher = SessionCipher.generate()
    received = []

    async def go():
        conn = PipeConnection()
        conn.feed(b"\x00" * 16 + LENGTH_STRUCT.pack(15) + b"\x00" * 15)  # not a block multiple
        conn.feed(encode_frame(*cipher.encrypt(b"after")))
        return await DuplexSession(conn, cipher).run(QueueSource(), received.append)

    result = asyncio.run(go())
    assert result.reason is CloseReason.DECRYPT_FAILED
    assert not result.ok
    assert result.lost == 1
    assert received == []


def test_decrypt_failure_can_be_skipped():
    cipher = SessionCipher.generate()
    received, lost = [], []

    async def go():
        conn = PipeConnection()
        conn.feed(b"\x00" * 16 + LENGTH_STRUCT.pack(15) + b"\x00" * 15)  # not a block multiple
        conn.feed(encode_frame(*cipher.encrypt(b"still here")))
        conn.feed_eof()
        session = DuplexSession(conn, cipher, stop_on_decrypt_error=False)
        return await session.run(QueueSource(), received.append, lost.append)

    result = asyncio.run(go())
    assert received == ["still here"]
    assert len(lost) == 1
    assert result.lost == 1
    assert result.reason is CloseReason.PEER_CLOSED


def test_invalid_utf8_is_replaced_not_fatal():
    cipher = SessionCipher.generate()
    received = []

    async def go():
        conn = PipeConnection()
        conn.feed(encode_frame(*cipher.encrypt(b"\xff\xfeok")))
        conn.feed_eof()
        return await DuplexSession(conn, cipher).run(QueueSource(), received.append)

    asyncio.run(go())
    assert received[0].endswith("ok")


def test_send_failure_is_transport_error():
    class Broken(PipeConnection):
        async def send_exact(self, data):
            raise BrokenPipeError("gone")

    async def go():
        return await DuplexSession(Broken(), SessionCipher.generate()).run(_source("hi"), print)

    result = asyncio.run(go())
    assert result.reason is CloseReason.TRANSPORT_ERROR
    assert result.sent == 0


def test_other_path_is_stopped_before_run_returns():
    cipher = SessionCipher.generate()

    async def go():
        conn = PipeConnection()
        session = DuplexSession(conn, cipher)
        before = set(asyncio.all_tasks())
        result = await session.run(_source("/exit"), print)
        leftover = set(asyncio.all_tasks()) - before
        return result, leftover

    result, leftover = asyncio.run(go())
    assert result.reason is CloseReason.LOCAL_EXIT
    assert leftover == set()


def test_duplex_between_two_peers():
    cipher = SessionCipher.generate()
    got_a, got_b = [], []

    async def go():
        a, b = make_pair()
        src_a, src_b = QueueSource(), QueueSource()
        sa = asyncio.ensure_future(DuplexSession(a, cipher).run(src_a, got_a.append))
        sb = asyncio.ensure_future(DuplexSession(b, cipher).run(src_b, got_b.append))
        src_a.put("ping")
        src_b.put("pong")
        while not (got_a and got_b):
            await asyncio.sleep(0.01)
        src_a.put("/exit")
        ra = await sa
        await a.close()
        rb = await sb
        return ra, rb

    ra, rb = asyncio.run(go())
    assert got_b == ["ping"] and got_a == ["pong"]
    assert ra.reason is CloseReason.LOCAL_EXIT
    assert rb.reason is CloseReason.PEER_CLOSED


def test_outgoing_message_over_limit_ends_session_cleanly():
    async def go():
        conn = PipeConnection()
        session = DuplexSession(conn, SessionCipher.generate(), max_frame_size=1024)
        result = await session.run(_source("x" * 2000, "never sent"), print)
        return conn, result

    conn, result = asyncio.run(go())
    assert result.reason is CloseReason.MESSAGE_TOO_LARGE
    assert not result.ok
    assert "1024" in result.detail
    assert result.sent == 0
    assert conn.sent == b""
