import asyncio
import sys
import threading
from typing import Callable, Optional, TextIO

from . import errors
from .session import DEFAULT_EXIT_COMMAND, CloseReason, QueueSource, SessionResult

"""
console.py — the terminal front end: read lines, print what arrives.

stdin is read on a daemon thread so a blocked readline() never keeps the
process alive once the session is over. Lines are handed to the event loop
through a QueueSource; EOF on stdin counts as "nothing more to send".
"""


class ConsoleSource(QueueSource):
    """QueueSource fed by a background thread reading lines from a text stream."""

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        prompt: Optional[Callable[[], None]] = None,
        exit_command: str = DEFAULT_EXIT_COMMAND,
    ) -> None:
        super().__init__()
        self.stream = stream if stream is not None else sys.stdin
        self.prompt = prompt
        self.exit_command = exit_command
        self._thread: Optional[threading.Thread] = None

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        self._thread = threading.Thread(target=self._pump, args=(loop,), daemon=True)
        self._thread.start()

    def _pump(self, loop: asyncio.AbstractEventLoop) -> None:
        while True:
            if self.prompt is not None:
                self.prompt()
            line = self.stream.readline()
            item = line.rstrip("\r\n") if line else None
            try:
                loop.call_soon_threadsafe(self.queue.put_nowait, item)
            except RuntimeError:
                # Event loop already closed: the session is over.
                return
            # Nothing is read (or prompted for) after the line that ends the chat.
            if item is None or item == self.exit_command:
                return


class ConsolePrinter:
    """Prints incoming messages as '[Peer]: text' and redraws the local prompt."""

    def __init__(self, local_label: str, peer_label: str, out: Optional[TextIO] = None) -> None:
        self.local_label = local_label
        self.peer_label = peer_label
        self.out = out if out is not None else sys.stdout

    def prompt(self) -> None:
        self.out.write(f"{self.local_label}: ")
        self.out.flush()

    def message(self, text: str) -> None:
        self.out.write(f"\n[{self.peer_label}]: {text}\n{self.local_label}: ")
        self.out.flush()

    def lost(self, detail: str) -> None:
        self.out.write(f"\n[!] A message from {self.peer_label} could not be decrypted and was dropped.\n")
        self.out.flush()


# ------------------------------
# Human-readable outcome messages
# ------------------------------

_RESULT_MESSAGES = {
    CloseReason.LOCAL_EXIT: "Chat closed.",
    CloseReason.PEER_CLOSED: "Connection closed by the peer.",
    CloseReason.TRUNCATED_FRAME: "Connection dropped in the middle of a message.",
    CloseReason.FRAME_TOO_LARGE: "Peer sent a message larger than the allowed size.",
    CloseReason.DECRYPT_FAILED: "A message could not be decrypted; the stream is likely corrupted.",
    CloseReason.TRANSPORT_ERROR: "Network error.",
    CloseReason.MESSAGE_TOO_LARGE: "Your message was too large to send; the chat was closed.",
}

# Most specific first; describe_error() takes the first isinstance match.
_ERROR_MESSAGES = (
    (errors.KeyGenerationError, "Could not generate an RSA key pair."),
    (errors.PeerKeyMissing, "Internal error: tried to wrap the session key before receiving the peer's public key."),
    (errors.PreconditionError, "Internal error: key material used out of order."),
    (errors.InvalidKeyEncoding, "The peer's public key could not be read."),
    (errors.UnwrapError, "The session key from the peer could not be unwrapped."),
    (errors.HandshakeError, "The key exchange did not complete."),
    (errors.FrameTooLarge, "A handshake message exceeded the size limit."),
    (errors.TruncatedFrame, "Connection dropped in the middle of a message."),
    (errors.ProtocolError, "The peer violated the protocol."),
    (errors.DecryptionError, "A message could not be decrypted."),
    (ConnectionRefusedError, "Connection refused; is the server running?"),
    (OSError, "Network error."),
)


def describe_result(result: SessionResult) -> str:
    msg = _RESULT_MESSAGES[result.reason]
    if result.detail:
        msg = f"{msg} ({result.detail})"
    return msg


def describe_error(exc: BaseException) -> str:
    for cls, msg in _ERROR_MESSAGES:
        if isinstance(exc, cls):
            return f"{msg} ({exc})" if str(exc) else msg
    return f"Unexpected error: {exc!r}"
