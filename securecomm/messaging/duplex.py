"""
Duplex Transport Engine

Pumps messages in both directions over one established channel:

    outbound thread:  prompt -> read message -> seal -> frame -> write
    inbound thread:   read -> unframe -> open -> display

Output goes through a single display thread fed by a queue, so neither
direction holds a lock while doing I/O. When either direction ends, the
engine closes the stream, which wakes the other direction's pending read,
and then tears everything down.

Per-message crypto failures drop the message and the channel continues.
Stream failures end the channel.
"""

import logging
import queue
import sys
import threading
from dataclasses import dataclass
from typing import Optional, Union

from ..errors import (
    AuthTagError,
    MalformedFrameError,
    ResourceError,
    StreamError,
    is_fatal_to_channel,
)
from .frame import FrameCodec
from .framing import LengthPrefixedFraming


DEFAULT_READ_SIZE = 4096
OUTBOUND_JOIN_TIMEOUT = 1.0  # seconds; a console read cannot be interrupted
DISPLAY_JOIN_TIMEOUT = 1.0


class _QuitSentinel:
    """Returned by a MessageSource when the user wants to stop sending."""

    def __repr__(self) -> str:
        return "QUIT"


QUIT = _QuitSentinel()


# ============================================================================
# Message Sources
# ============================================================================

class MessageSource:
    """Where outbound messages come from."""

    def read_next_outgoing_message(self) -> Union[str, _QuitSentinel]:
        raise NotImplementedError

    def close(self) -> None:
        """Unblock a pending read if the source supports it."""


class ConsoleMessageSource(MessageSource):
    """
    Reads one message per line from a text stream (stdin by default).

    The quit command and end of input both yield QUIT.
    """

    def __init__(self, quit_command: str = "exit", stream=None):
        self._quit_command = quit_command
        self._stream = stream if stream is not None else sys.stdin

    def read_next_outgoing_message(self) -> Union[str, _QuitSentinel]:
        line = self._stream.readline()
        if not line:
            return QUIT
        message = line.rstrip("\r\n")
        if message == self._quit_command:
            return QUIT
        return message


class QueueMessageSource(MessageSource):
    """
    Messages pushed by the application.

    Example:
        >>> source = QueueMessageSource()
        >>> source.put("hello")
        >>> source.close()   # the outbound thread sees QUIT next
    """

    def __init__(self):
        self._queue = queue.Queue()

    def put(self, message: Union[str, _QuitSentinel]) -> None:
        self._queue.put(message)

    def read_next_outgoing_message(self) -> Union[str, _QuitSentinel]:
        message = self._queue.get()
        if message is QUIT:
            # Stay closed for any later reader
            self._queue.put(QUIT)
        return message

    def close(self) -> None:
        self._queue.put(QUIT)


# ============================================================================
# Display
# ============================================================================

_PROMPT = "prompt"
_MESSAGE = "message"
_STOP = "stop"


class Display:
    """
    Serialized console output.

    All writes happen on one display thread that drains a queue. A message
    arriving while a prompt is shown is printed on its own line and the
    prompt is rendered again.

    Several engines may share one Display, as the server does for its
    connections. Each start() is matched by a stop().
    """

    def __init__(self, output=None, prompt: str = "You: ", peer_label: str = "Peer"):
        self._output = output if output is not None else sys.stdout
        self._prompt = prompt
        self._peer_label = peer_label
        self._queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._prompt_shown = False
        self._users = 0
        self._lock = threading.Lock()

    def start(self) -> None:
        """Start the display thread, or join it if another engine already did."""
        with self._lock:
            self._users += 1
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self._run, name="display", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        """Flush pending output; the thread stops when its last user leaves."""
        with self._lock:
            if self._thread is None:
                return
            self._users -= 1
            if self._users > 0:
                return
            thread, self._thread = self._thread, None
        self._queue.put((_STOP, None))
        thread.join(DISPLAY_JOIN_TIMEOUT)

    def display_prompt(self) -> None:
        self._queue.put((_PROMPT, None))

    def display_message(self, text: str) -> None:
        self._queue.put((_MESSAGE, text))

    def _run(self) -> None:
        while True:
            kind, text = self._queue.get()
            if kind == _STOP:
                break
            if kind == _PROMPT:
                self._output.write(self._prompt)
                self._prompt_shown = True
            elif self._prompt_shown:
                self._output.write(f"\n{self._peer_label}: {text}\n{self._prompt}")
            else:
                self._output.write(f"{self._peer_label}: {text}\n")
            self._output.flush()


# ============================================================================
# Channel and Engine
# ============================================================================

@dataclass
class ChannelStats:
    """Message counts for one channel run."""
    sent: int = 0
    received: int = 0
    dropped: int = 0
    error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class Channel:
    """
    An established connection: stream, frame codec and framing mode.

    The codec's key is never modified after construction, so the inbound
    and outbound threads share it without locking.
    """

    def __init__(self, stream, codec: FrameCodec, framing=None,
                 read_size: int = DEFAULT_READ_SIZE):
        self.stream = stream
        self.codec = codec
        self.framing = framing or LengthPrefixedFraming()
        self.read_size = read_size

    @property
    def peer(self) -> str:
        return getattr(self.stream, "peer", "unknown")

    def send(self, message: str) -> int:
        """
        Seal, frame and write one message.

        Returns:
            Size of the frame in bytes

        Raises:
            StreamError: If the write fails
            ResourceError: If the message cannot be sealed or framed
        """
        frame = self.codec.seal(message.encode("utf-8"))
        try:
            data = self.framing.encode(frame.to_bytes())
        except ValueError as exc:
            raise ResourceError(str(exc)) from exc
        self.stream.write_bytes(data)
        return len(frame)

    def close(self) -> None:
        self.stream.close()


class DuplexEngine:
    """
    Runs the outbound and inbound activities of one channel until either
    ends, then tears both down.

    Example:
        >>> engine = DuplexEngine(channel, ConsoleMessageSource(), Display())
        >>> stats = engine.run()
        >>> stats.sent, stats.received, stats.dropped
        (3, 2, 0)
    """

    def __init__(self, channel: Channel, source: MessageSource, display: Display,
                 context=None, principal: str = "anonymous",
                 outbound_join_timeout: float = OUTBOUND_JOIN_TIMEOUT):
        self._channel = channel
        self._source = source
        self._display = display
        self._principal = principal
        self._outbound_join_timeout = outbound_join_timeout
        self._logger = context.logger if context is not None else logging.getLogger("securecomm")
        self._events = context.events if context is not None else None
        self._done = threading.Event()
        self._stats = ChannelStats()

    @property
    def stats(self) -> ChannelStats:
        return self._stats

    def run(self) -> ChannelStats:
        """Block until the channel is finished and return its counts."""
        peer = self._channel.peer
        if self._events is not None:
            self._events.log_channel_opened(self._principal, peer)
        self._display.start()

        outbound = threading.Thread(target=self._outbound_loop, name="outbound", daemon=True)
        inbound = threading.Thread(target=self._inbound_loop, name="inbound", daemon=True)
        outbound.start()
        inbound.start()

        self._done.wait()

        self._channel.close()
        self._source.close()
        inbound.join()
        outbound.join(self._outbound_join_timeout)
        if outbound.is_alive():
            self._logger.debug("Outbound thread still blocked on input; abandoning it")
        self._display.stop()

        stats = self._stats
        self._logger.info("Channel with %s closed (sent=%d received=%d dropped=%d)",
                          peer, stats.sent, stats.received, stats.dropped)
        if self._events is not None:
            self._events.log_channel_closed(
                self._principal, peer, stats.sent, stats.received, stats.dropped
            )
        return stats

    def _fail(self, exc: BaseException) -> None:
        """Record the first channel-fatal error, unless teardown already began."""
        if self._done.is_set():
            return
        if self._stats.error is None:
            self._stats.error = exc
        self._logger.error("Channel error: %s", exc)

    # ========================================================================
    # Outbound
    # ========================================================================

    def _outbound_loop(self) -> None:
        try:
            while not self._done.is_set():
                self._display.display_prompt()
                message = self._source.read_next_outgoing_message()
                if message is QUIT or self._done.is_set():
                    self._logger.info("Outbound finished")
                    break
                if not self._send(message):
                    break
        except Exception as exc:
            self._logger.exception("Outbound activity failed")
            self._fail(exc)
        finally:
            self._done.set()

    def _send(self, message: str) -> bool:
        """Send one message. Returns False if the channel must close."""
        try:
            size = self._channel.send(message)
        except Exception as exc:
            if not is_fatal_to_channel(exc):
                self._logger.error("Message not sent: %s", exc)
                return True
            self._fail(exc)
            return False

        self._stats.sent += 1
        if self._events is not None:
            self._events.log_message_sent(self._principal, size)
        return True

    # ========================================================================
    # Inbound
    # ========================================================================

    def _inbound_loop(self) -> None:
        decoder = self._channel.framing.decoder()
        try:
            while True:
                data = self._channel.stream.read_bytes(self._channel.read_size)
                if not data:
                    if not self._done.is_set():
                        self._logger.info("Peer closed the connection")
                    break
                for raw in decoder.feed(data):
                    self._receive(raw)
        except StreamError as exc:
            self._fail(exc)
        except Exception as exc:
            self._logger.exception("Inbound activity failed")
            self._fail(exc)
        finally:
            self._done.set()

    def _receive(self, raw: bytes) -> None:
        try:
            plaintext = self._channel.codec.open(raw)
        except (MalformedFrameError, AuthTagError, ResourceError) as exc:
            self._stats.dropped += 1
            self._logger.warning("Dropped frame (%s): %s", type(exc).__name__, exc)
            if self._events is not None:
                self._events.log_message_dropped(self._principal, type(exc).__name__, len(raw))
            return

        self._stats.received += 1
        if self._events is not None:
            self._events.log_message_received(self._principal, len(raw))
        self._display.display_message(plaintext.decode("utf-8", errors="replace"))
