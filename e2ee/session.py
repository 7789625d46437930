import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from .cipher import SessionCipher
from .errors import DecryptionError, FrameTooLarge, TruncatedFrame
from .framing import MAX_FRAME_SIZE, read_frame, write_frame

"""
session.py — the encrypted chat loop once the handshake is done.

Two asyncio tasks per connection:
- send path: pull plaintext from a source, encrypt, write one frame each.
- receive path: read frames, decrypt, hand plaintext to a callback.

They share the SessionCipher (read-only) and the Connection (each uses its
own direction of it), so no locking. The session ends as soon as either
path ends; run() cancels and awaits the other one before returning.
"""

LOG = logging.getLogger("e2ee.session")

DEFAULT_EXIT_COMMAND = "/exit"


class CloseReason(str, Enum):
    LOCAL_EXIT = "local_exit"
    PEER_CLOSED = "peer_closed"
    TRUNCATED_FRAME = "truncated_frame"
    FRAME_TOO_LARGE = "frame_too_large"
    DECRYPT_FAILED = "decrypt_failed"
    TRANSPORT_ERROR = "transport_error"
    MESSAGE_TOO_LARGE = "message_too_large"


# Ways a session can end without anything having gone wrong.
NORMAL_REASONS = frozenset({CloseReason.LOCAL_EXIT, CloseReason.PEER_CLOSED})


@dataclass(frozen=True)
class SessionResult:
    reason: CloseReason
    detail: Optional[str] = None
    sent: int = 0
    received: int = 0
    lost: int = 0

    @property
    def ok(self) -> bool:
        return self.reason in NORMAL_REASONS


class QueueSource:
    """
    Message source backed by an asyncio.Queue.

    Put strings in; put None (or call close()) to say there is nothing more.
    """

    def __init__(self, queue: Optional["asyncio.Queue[Optional[str]]"] = None) -> None:
        self.queue = queue if queue is not None else asyncio.Queue()

    def put(self, message: Optional[str]) -> None:
        self.queue.put_nowait(message)

    def close(self) -> None:
        self.queue.put_nowait(None)

    async def next_message(self) -> Optional[str]:
        return await self.queue.get()


class DuplexSession:
    """
    Runs the send and receive paths for one established connection.

    Args:
        conn: transport.Connection (or anything with send_exact/recv_exact).
        cipher: the SessionCipher the handshake produced.
        exit_command: a message equal to this ends the send path; it is
            never sent.
        stop_on_decrypt_error: end the session on the first frame that
            won't decrypt (default). With False, the frame is counted as lost
            and reading continues.
        max_frame_size: ciphertext cap for both directions.
    """

    def __init__(
        self,
        conn,
        cipher: SessionCipher,
        exit_command: str = DEFAULT_EXIT_COMMAND,
        stop_on_decrypt_error: bool = True,
        max_frame_size: int = MAX_FRAME_SIZE,
    ) -> None:
        self.conn = conn
        self.cipher = cipher
        self.exit_command = exit_command
        self.stop_on_decrypt_error = stop_on_decrypt_error
        self.max_frame_size = max_frame_size
        self.sent = 0
        self.received = 0
        self.lost = 0

    async def run(
        self,
        source,
        on_message: Callable[[str], None],
        on_lost: Optional[Callable[[str], None]] = None,
    ) -> SessionResult:
        """
        Run both paths until one finishes, then stop the other.

        `source` needs an async next_message() returning str, or None when
        there is nothing more to send.
        """
        send_task = asyncio.ensure_future(self._send_loop(source))
        recv_task = asyncio.ensure_future(self._receive_loop(on_message, on_lost))
        try:
            done, pending = await asyncio.wait(
                {send_task, recv_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (send_task, recv_task):
                if not task.done():
                    task.cancel()
            # Join both before the caller gets to close the connection.
            await asyncio.gather(send_task, recv_task, return_exceptions=True)

        first = send_task if send_task in done else recv_task
        reason, detail = first.result()
        result = SessionResult(
            reason=reason,
            detail=detail,
            sent=self.sent,
            received=self.received,
            lost=self.lost,
        )
        LOG.info(
            "Session ended: %s (sent=%d received=%d lost=%d)",
            reason.value, result.sent, result.received, result.lost,
        )
        return result

    async def _send_loop(self, source) -> Tuple[CloseReason, Optional[str]]:
        while True:
            message = await source.next_message()
            if message is None or message == self.exit_command:
                return CloseReason.LOCAL_EXIT, None
            iv, ciphertext = self.cipher.encrypt(message.encode("utf-8"))
            try:
                await write_frame(self.conn, iv, ciphertext, self.max_frame_size)
            except FrameTooLarge as exc:
                # Checked before anything is written, so the stream is still in sync.
                LOG.warning("Outgoing message too large: %s", exc)
                return CloseReason.MESSAGE_TOO_LARGE, str(exc)
            except (ConnectionError, OSError) as exc:
                LOG.warning("Send failed: %s", exc)
                return CloseReason.TRANSPORT_ERROR, str(exc)
            self.sent += 1
            LOG.debug("Sent frame with %d ciphertext bytes", len(ciphertext))

    async def _receive_loop(
        self,
        on_message: Callable[[str], None],
        on_lost: Optional[Callable[[str], None]],
    ) -> Tuple[CloseReason, Optional[str]]:
        while True:
            try:
                frame = await read_frame(self.conn, self.max_frame_size)
            except TruncatedFrame as exc:
                LOG.warning("Truncated frame: %s", exc)
                return CloseReason.TRUNCATED_FRAME, str(exc)
            except FrameTooLarge as exc:
                LOG.warning("Oversized frame: %s", exc)
                return CloseReason.FRAME_TOO_LARGE, str(exc)
            except (ConnectionError, OSError) as exc:
                LOG.warning("Receive failed: %s", exc)
                return CloseReason.TRANSPORT_ERROR, str(exc)

            if frame is None:
                return CloseReason.PEER_CLOSED, None

            try:
                plaintext = self.cipher.decrypt(frame.ciphertext, frame.iv)
            except DecryptionError as exc:
                self.lost += 1
                LOG.warning("Could not decrypt incoming frame: %s", exc)
                if self.stop_on_decrypt_error:
                    return CloseReason.DECRYPT_FAILED, str(exc)
                if on_lost is not None:
                    on_lost(str(exc))
                continue

            self.received += 1
            on_message(plaintext.decode("utf-8", errors="replace"))
