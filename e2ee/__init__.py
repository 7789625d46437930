"""
e2ee — confidential point-to-point chat over TCP.

Handshake: the server sends its RSA-2048 public key, the client answers
with its own, then the client picks a random AES-256 session key, wraps it
with RSA-OAEP under the server's key and sends it over. After that each chat
message is one frame: 16-byte IV, 4-byte big-endian length, AES-CBC
ciphertext.

KNOWN LIMITS:
- No peer authentication. Whoever completes the TCP connection gets the key.
- No MAC. Tampered frames surface only as padding errors or garbled text.
- One key for the whole connection, no rekeying, no resumption.

Run it with: python -m e2ee.run --help
"""
__all__ = [
    "cipher",
    "config",
    "console",
    "crypto",
    "errors",
    "framing",
    "handshake",
    "node",
    "run",
    "session",
    "transport",
    "utils",
]
