"""
Socket Transport

TCP helpers for the duplex engine and the public value exchange:

- SocketStream: write_bytes / read_bytes / close over a connected socket
- connect / listen: client and server socket setup
- StreamKeyExchange: swaps DH public values as [length (2 bytes BE) | value]

Closing a SocketStream from any thread unblocks a read pending on it,
which is how one direction of a channel stops the other.
"""

import socket
import struct
import threading

from ..errors import ErrorCode, StreamError


LISTEN_BACKLOG = 3
EXCHANGE_LENGTH = struct.Struct(">H")


class SocketStream:
    """Byte stream over a connected TCP socket."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._closed = False
        self._lock = threading.Lock()
        try:
            self.peer = "%s:%s" % sock.getpeername()[:2]
        except (OSError, TypeError):
            self.peer = "unknown"

    @property
    def closed(self) -> bool:
        return self._closed

    def write_bytes(self, data: bytes) -> None:
        """
        Send all of data.

        Raises:
            StreamError: If the socket is closed or the send fails
        """
        if self._closed:
            raise StreamError("Stream is closed", ErrorCode.SEND)
        try:
            self._sock.sendall(data)
        except OSError as exc:
            raise StreamError(f"Send failed: {exc}", ErrorCode.SEND) from exc

    def read_bytes(self, max_bytes: int) -> bytes:
        """
        Read up to max_bytes.

        Returns:
            Received bytes; b"" when the peer closed or this stream was
            closed locally

        Raises:
            StreamError: On a read failure of an open stream
        """
        if self._closed:
            return b""
        try:
            return self._sock.recv(max_bytes)
        except OSError as exc:
            if self._closed:
                return b""
            raise StreamError(f"Receive failed: {exc}", ErrorCode.RECV) from exc

    def close(self) -> None:
        """Shut down both directions, then close. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone
            pass
        self._sock.close()


def connect(address: str, port: int) -> SocketStream:
    """
    Open a TCP connection to address:port.

    Raises:
        StreamError: If the address is invalid or the connection fails
    """
    try:
        sock = socket.create_connection((address, port))
    except socket.gaierror as exc:
        raise StreamError(f"Invalid address {address}: {exc}", ErrorCode.ADDRESS) from exc
    except OSError as exc:
        raise StreamError(f"Connection to {address}:{port} failed: {exc}", ErrorCode.CONNECT) from exc
    return SocketStream(sock)


def listen(address: str, port: int, backlog: int = LISTEN_BACKLOG) -> socket.socket:
    """
    Bind a listening TCP socket with SO_REUSEADDR set.

    Raises:
        StreamError: If the socket cannot be bound
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((address, port))
        sock.listen(backlog)
    except OSError as exc:
        sock.close()
        raise StreamError(f"Cannot listen on {address}:{port}: {exc}", ErrorCode.SOCKET) from exc
    return sock


class StreamKeyExchange:
    """
    PublicValueExchange over a SocketStream.

    Both peers write their value first and then read, so the exchange
    cannot deadlock on the small public values involved.
    """

    def __init__(self, stream):
        self._stream = stream

    def __call__(self, local_public: bytes) -> bytes:
        self._stream.write_bytes(EXCHANGE_LENGTH.pack(len(local_public)) + local_public)
        (length,) = EXCHANGE_LENGTH.unpack(self._read_exact(EXCHANGE_LENGTH.size))
        return self._read_exact(length)

    def _read_exact(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self._stream.read_bytes(n - len(buf))
            if not chunk:
                raise StreamError("Peer closed during key exchange", ErrorCode.RECV)
            buf.extend(chunk)
        return bytes(buf)
