import asyncio

import pytest

from conftest import PipeConnection, make_pair
from e2ee.crypto import KeyStore
from e2ee.errors import HandshakeError, InvalidKeyEncoding, PreconditionError, UnwrapError
from e2ee.framing import LENGTH_STRUCT, read_blob, write_blob
from e2ee.handshake import Handshake, HandshakeState, Role


def _run_both(initiator_keys, responder_keys):
    async def go():
        ic, rc = make_pair()
        initiator = Handshake(Role.INITIATOR, ic, initiator_keys)
        responder = Handshake(Role.RESPONDER, rc, responder_keys)
        ci, cr = await asyncio.gather(initiator.run(), responder.run())
        return initiator, responder, ci, cr, ic, rc

    return asyncio.run(go())


def test_both_sides_end_with_same_key(key_stores):
    initiator, responder, ci, cr, ic, rc = _run_both(key_stores[0], key_stores[1])
    assert ci.key == cr.key
    assert initiator.state is responder.state is HandshakeState.SESSION_KEY_ESTABLISHED
    # Both sides learned both public keys.
    assert key_stores[0].has_peer_key and key_stores[1].has_peer_key


def test_wire_layout(key_stores):
    _, _, _, _, ic, rc = _run_both(key_stores[0], key_stores[1])
    r_pem = key_stores[1].export_public_key()
    i_pem = key_stores[0].export_public_key()
    # Responder sent exactly one length-prefixed PEM.
    assert bytes(rc.sent) == LENGTH_STRUCT.pack(len(r_pem)) + r_pem
    # Initiator sent its PEM then exactly 256 bytes of wrapped key.
    prefix = LENGTH_STRUCT.pack(len(i_pem)) + i_pem
    assert bytes(ic.sent[: len(prefix)]) == prefix
    assert len(ic.sent) - len(prefix) == 256


def test_generates_keypair_when_missing():
    async def go():
        ic, rc = make_pair()
        hi = Handshake(Role.INITIATOR, ic)
        hr = Handshake(Role.RESPONDER, rc)
        ci, cr = await asyncio.gather(hi.run(), hr.run())
        return ci.key == cr.key

    assert asyncio.run(go())


def test_run_twice_is_precondition_error(key_stores):
    initiator, *_ = _run_both(key_stores[0], key_stores[1])

    async def go():
        await initiator.run()

    with pytest.raises(PreconditionError):
        asyncio.run(go())


def test_initiator_aborts_on_garbage_key(key_stores):
    async def go():
        conn = PipeConnection()
        await write_blob(conn, b"not a pem at all")
        conn.feed(bytes(conn.sent))
        conn.sent.clear()
        hs = Handshake(Role.INITIATOR, conn, key_stores[0])
        try:
            await hs.run()
        finally:
            assert hs.state is HandshakeState.ABORTED

    with pytest.raises(InvalidKeyEncoding):
        asyncio.run(go())


def test_initiator_aborts_when_peer_closes_early(key_stores):
    async def go():
        conn = PipeConnection()
        conn.feed(b"\x00\x00")
        conn.feed_eof()
        hs = Handshake(Role.INITIATOR, conn, key_stores[0])
        try:
            await hs.run()
        finally:
            assert hs.state is HandshakeState.ABORTED

    with pytest.raises(HandshakeError):
        asyncio.run(go())


def test_responder_aborts_on_short_wrapped_key(key_stores):
    responder_keys, fake_initiator = key_stores[1], key_stores[0]

    async def go():
        ic, rc = make_pair()
        hs = Handshake(Role.RESPONDER, rc, responder_keys)
        task = asyncio.ensure_future(hs.run())
        await read_blob(ic)
        await write_blob(ic, fake_initiator.export_public_key())
        await ic.send_exact(b"\x00" * 100)
        await ic.close()
        try:
            await task
        finally:
            assert hs.state is HandshakeState.ABORTED

    with pytest.raises(HandshakeError):
        asyncio.run(go())


def test_responder_aborts_on_bad_wrapped_key(key_stores):
    responder_keys, fake_initiator = key_stores[1], key_stores[0]

    async def go():
        ic, rc = make_pair()
        hs = Handshake(Role.RESPONDER, rc, responder_keys)
        task = asyncio.ensure_future(hs.run())
        await read_blob(ic)
        await write_blob(ic, fake_initiator.export_public_key())
        await ic.send_exact(b"\x42" * 256)
        try:
            await task
        finally:
            assert hs.state is HandshakeState.ABORTED

    with pytest.raises(UnwrapError):
        asyncio.run(go())


def test_transport_error_becomes_handshake_error(key_stores):
    class Broken(PipeConnection):
        async def send_exact(self, data):
            raise ConnectionResetError("reset by peer")

    async def go():
        hs = Handshake(Role.RESPONDER, Broken(), key_stores[1])
        await hs.run()

    with pytest.raises(HandshakeError):
        asyncio.run(go())


def test_oaep_hash_mismatch_fails_on_responder(rsa_private_keys):
    initiator_keys = KeyStore("sha256", private_key=rsa_private_keys[0])
    responder_keys = KeyStore("sha1", private_key=rsa_private_keys[1])

    with pytest.raises(UnwrapError):
        _run_both(initiator_keys, responder_keys)


def test_cancelled_handshake_is_aborted(key_stores):
    async def go():
        ic, rc = make_pair()
        hs = Handshake(Role.RESPONDER, rc, key_stores[1])
        task = asyncio.ensure_future(hs.run())
        # Responder has sent its key and now waits for ours.
        await read_blob(ic)
        assert hs.state is HandshakeState.IDLE
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        return hs.state

    assert asyncio.run(go()) is HandshakeState.ABORTED
