"""The multiplexer client: relays the local terminal to the daemon."""

from __future__ import annotations

import argparse
import contextlib
import logging
import os
import select
import signal
import subprocess
import sys
import tempfile
import termios
import time
import tty

from .htm_server import get_pipe_name
from .ipc import IpcError, IpcPairClient
from .protocol import HeaderCode

logger = logging.getLogger(__name__)

HTM_EXIT = b"\x1b[$$$q"
READ_SIZE = 1024


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class HtmClient(IpcPairClient):
    """Copies stdin to the daemon and the daemon's output to stdout."""

    def run(self, stdin_fd: int = 0, stdout_fd: int = 1) -> None:
        """Relay until the daemon ends the session."""
        while True:
            ready, _, _ = select.select([self.endpoint, stdin_fd], [], [], 0.01)
            if stdin_fd in ready:
                data = os.read(stdin_fd, READ_SIZE)
                if not data:
                    raise IpcError("stdin has closed abruptly.")
                self.endpoint.sendall(data)
            if self.endpoint in ready:
                data = self.endpoint.recv(READ_SIZE)
                # A lone session-end byte means the daemon is going away.
                if not data or data == HeaderCode.SESSION_END.value:
                    logger.info("htmd has closed")
                    with contextlib.suppress(OSError):
                        self.endpoint.close()
                    self.endpoint = None
                    return
                _write_all(stdout_fd, data)


def _daemon_running(uid: int) -> bool:
    try:
        result = subprocess.run(
            ["pgrep", "-x", "-U", str(uid), "htmd"], capture_output=True, text=True
        )
    except FileNotFoundError:
        return False
    return bool(result.stdout)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="htm", description="Headless terminal multiplexer")
    parser.add_argument(
        "-x",
        "--kill-other-sessions",
        action="store_true",
        help="kill all old sessions belonging to the user",
    )
    args, _ = parser.parse_known_args(argv)

    logging.basicConfig(
        filename=os.path.join(tempfile.gettempdir(), "htm.log"),
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    stdin_fd = sys.stdin.fileno()
    stdout_fd = sys.stdout.fileno()
    saved_attrs = termios.tcgetattr(stdin_fd) if os.isatty(stdin_fd) else None

    def restore_terminal() -> None:
        _write_all(stdout_fd, HTM_EXIT)
        if saved_attrs is not None:
            termios.tcsetattr(stdin_fd, termios.TCSANOW, saved_attrs)

    def on_term(signum, frame):
        restore_terminal()
        os._exit(1)

    if saved_attrs is not None:
        tty.setraw(stdin_fd, termios.TCSANOW)
    signal.signal(signal.SIGTERM, on_term)

    uid = os.getuid()
    if args.kill_other_sessions:
        logger.info("Killing previous htmd")
        with contextlib.suppress(FileNotFoundError):
            subprocess.run(["pkill", "-x", "-U", str(uid), "htmd"])

    if not _daemon_running(uid):
        subprocess.Popen(
            ["htmd"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    time.sleep(0.01)
    try:
        client = HtmClient(get_pipe_name())
        client.run(stdin_fd, stdout_fd)
    finally:
        restore_terminal()
    return 0