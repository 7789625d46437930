"""
errors.py — every failure the channel can report, in one place.

Rough map of who raises what:
- PreconditionError / PeerKeyMissing: calling the key store out of order.
  These are bugs in the caller, not something a peer can trigger.
- KeyGenerationError: the RSA primitive itself failed. Fatal.
- ProtocolError and friends: the peer sent something we can't use, or the
  stream died mid-message. Abort the connection; no retry on the same one.
- DecryptionError: one message didn't decrypt. The session decides whether
  that ends the conversation.

A clean close by the peer is NOT an error; read_frame() just returns None.
"""


class E2EEError(Exception):
    pass


# -------------------
# Fatal / setup errors
# -------------------

class PreconditionError(E2EEError):
    pass


class PeerKeyMissing(PreconditionError):
    pass


class KeyGenerationError(E2EEError):
    pass


# ------------------------
# Protocol / decoding errors
# ------------------------

class ProtocolError(E2EEError):
    pass


class InvalidKeyEncoding(ProtocolError):
    pass


class UnwrapError(ProtocolError):
    pass


class HandshakeError(ProtocolError):
    pass


class FrameError(ProtocolError):
    pass


class TruncatedFrame(FrameError):
    pass


class FrameTooLarge(FrameError):
    pass


# -----------------
# Per-message errors
# -----------------

class DecryptionError(E2EEError):
    pass
