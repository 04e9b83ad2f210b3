"""The multiplexer daemon: keeps terminals alive and serves one client at a time."""

from __future__ import annotations

import argparse
import logging
import os
import select
import tempfile
import time

from .ipc import IpcError, IpcPairServer
from .multiplexer_state import UUID_LENGTH, MultiplexerState
from .protocol import (
    HeaderCode,
    encoded_length,
    read_b64,
    read_exact,
    read_length,
    write_b64,
    write_length,
)

logger = logging.getLogger(__name__)

HTM_ENTER = b"\x1b[###q"
_INIT_MESSAGE = "Initializing HTM, please wait...\n\r"
_READY_MESSAGE = (
    "HTM initialized.\n\rPress escape in this terminal to "
    "disconnect.\n\rPress x in this terminal to shut down HTM\n\r"
)


def get_pipe_name() -> str:
    """Return the per-user socket path of the daemon."""
    return os.path.join(tempfile.gettempdir(), f"htm.{os.getuid()}.ipc")


class HtmServer(IpcPairServer):
    """Reads client requests, applies them to the layout and streams output back."""

    def __init__(
        self,
        path: str | None = None,
        state: MultiplexerState | None = None,
        poll_interval: float = 0.01,
        accept_interval: float = 1.0,
    ):
        super().__init__(path if path is not None else get_pipe_name())
        self.state = state if state is not None else MultiplexerState()
        self.running = True
        self.poll_interval = poll_interval
        self.accept_interval = accept_interval

    def run(self) -> None:
        """Serve until asked to shut down or no panes remain."""
        while self.running:
            if self.endpoint is None:
                time.sleep(self.accept_interval)
                self.poll_accept()
                continue
            try:
                ready, _, _ = select.select([self.endpoint], [], [], self.poll_interval)
                if ready:
                    self.handle_message()
                if self.endpoint is not None:
                    self.state.update(self.endpoint)
            except (OSError, ValueError) as exc:
                logger.error("%s", exc)
                self.close_endpoint()
        self.close_endpoint()

    def _read_id(self) -> str:
        return read_exact(self.endpoint, UUID_LENGTH).decode()

    def handle_message(self) -> None:
        """Read one request from the client and apply it."""
        sock = self.endpoint
        raw_header = read_exact(sock, 1)
        try:
            header = HeaderCode(raw_header)
        except ValueError:
            raise IpcError(f"Got unknown packet header: {raw_header[0]}") from None
        length = read_length(sock)
        logger.debug("Got message header %s with length %d", header.name, length)

        if header is HeaderCode.INSERT_KEYS:
            uid = self._read_id()
            data = read_b64(sock, length - UUID_LENGTH)
            self.state.append_data(uid, data)
        elif header is HeaderCode.INSERT_DEBUG_KEYS:
            data = read_exact(sock, length)
            key = data[:1]
            if key == b"x":
                self.running = False
            if key == b"\x1b":
                logger.info("Closing endpoint")
                self.close_endpoint()
            if key == b"d":
                logger.info("Current state: %s", self.state.to_json_string())
        elif header is HeaderCode.NEW_TAB:
            tab_id = self._read_id()
            pane_id = self._read_id()
            self.state.new_tab(tab_id, pane_id)
        elif header is HeaderCode.NEW_SPLIT:
            source_id = self._read_id()
            pane_id = self._read_id()
            vertical = read_exact(sock, 1) == b"1"
            self.state.new_split(source_id, pane_id, vertical)
        elif header is HeaderCode.RESIZE_PANE:
            cols = read_length(sock)
            rows = read_length(sock)
            pane_id = self._read_id()
            self.state.resize_pane(pane_id, cols, rows)
        elif header is HeaderCode.CLIENT_CLOSE_PANE:
            pane_id = self._read_id()
            logger.info("Closing pane: %s", pane_id)
            self.state.close_pane(pane_id)
            if self.state.num_panes == 0:
                self.running = False
        else:
            raise IpcError(f"Got unknown packet header: {raw_header[0]}")

    def send_debug(self, msg: str) -> None:
        """Send a message for the client to show in its debug pane."""
        data = msg.encode()
        self.endpoint.sendall(HeaderCode.DEBUG_LOG.value)
        write_length(self.endpoint, encoded_length(data))
        write_b64(self.endpoint, data)

    def recover(self) -> None:
        """Switch the client into multiplexer mode and send it the full state."""
        self.endpoint.sendall(HTM_ENTER)
        time.sleep(0.01)
        self.send_debug(_INIT_MESSAGE)
        payload = self.state.to_json_string().encode()
        self.endpoint.sendall(HeaderCode.INIT_STATE.value)
        write_length(self.endpoint, len(payload))
        self.endpoint.sendall(payload)
        self.state.send_terminal_buffers(self.endpoint)
        self.send_debug(_READY_MESSAGE)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="htmd", description="Headless terminal multiplexer daemon")
    parser.parse_known_args(argv)
    logging.basicConfig(
        filename=os.path.join(tempfile.gettempdir(), "htmd.log"),
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    server = HtmServer(get_pipe_name())
    try:
        server.run()
    finally:
        server.close()
    logger.info("Server is shutting down")
    return 0