"""A pair of endpoints joined by a Unix domain socket: one server, one client."""

from __future__ import annotations

import contextlib
import logging
import os
import socket
import time
from abc import ABC, abstractmethod

from .protocol import HeaderCode

logger = logging.getLogger(__name__)


class IpcError(Exception):
    """Raised when the IPC pipe cannot be set up or carries bad data."""


class IpcPairEndpoint:
    """One side of the pipe, holding the connected socket (or None)."""

    def __init__(self, endpoint: socket.socket | None = None):
        self.endpoint = endpoint

    def close_endpoint(self) -> None:
        """Tell the peer the session is over and drop the connection."""
        if self.endpoint is None:
            return
        logger.info("Sending session end")
        with contextlib.suppress(OSError):
            self.endpoint.sendall(HeaderCode.SESSION_END.value)
        with contextlib.suppress(OSError):
            self.endpoint.close()
        self.endpoint = None


class IpcPairClient(IpcPairEndpoint):
    """Connects to the server's socket, retrying a few times."""

    def __init__(self, path: str, retries: int = 5, retry_delay: float = 1.0):
        super().__init__()
        self.path = path
        for _ in range(retries):
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            try:
                sock.connect(path)
            except OSError:
                sock.close()
                time.sleep(retry_delay)
                continue
            self.endpoint = sock
            return
        raise IpcError("Connect to IPC failed")


class IpcPairServer(IpcPairEndpoint, ABC):
    """Listens on a socket path and keeps at most one connected client."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)
        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            listener.bind(path)
            listener.listen()
        except OSError as exc:
            listener.close()
            raise IpcError(f"cannot listen on {path}: {exc}") from exc
        listener.setblocking(False)
        self.listener = listener

    def poll_accept(self) -> None:
        """Accept a waiting client, replacing the current one, then recover."""
        try:
            conn, _ = self.listener.accept()
        except (BlockingIOError, InterruptedError):
            return
        conn.setblocking(True)
        if self.endpoint is not None:
            self.close_endpoint()
        self.endpoint = conn
        self.recover()

    @abstractmethod
    def recover(self) -> None:
        """Bring a newly accepted client up to date."""

    def close(self) -> None:
        """Close the client connection and the listening socket."""
        self.close_endpoint()
        self.listener.close()
        with contextlib.suppress(FileNotFoundError):
            os.unlink(self.path)