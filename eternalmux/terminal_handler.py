"""A shell running on a pseudo terminal, with a bounded scrollback buffer."""

from __future__ import annotations

import contextlib
import errno
import fcntl
import os
import pty
import pwd
import select
import signal
import struct
import termios
from collections import deque

MAX_BUFFER_LINES = 1024
MAX_BUFFER_CHARS = 128 * MAX_BUFFER_LINES
READ_SIZE = 16 * 1024
HTM_VERSION = "6.2.11"


class ScrollbackBuffer:
    """Lines of terminal output, trimmed to a maximum line and character count."""

    def __init__(self, max_lines: int = MAX_BUFFER_LINES, max_chars: int = MAX_BUFFER_CHARS):
        self.max_lines = max_lines
        self.max_chars = max_chars
        self._lines: deque[bytes] = deque()
        self._chars = 0

    def append(self, text: bytes) -> None:
        """Add raw output, continuing the last line and trimming old lines."""
        if not text:
            return
        tokens = text.split(b"\n")
        self._chars += sum(len(token) for token in tokens)
        if self._lines:
            self._lines[-1] += tokens[0]
            tokens = tokens[1:]
        self._lines.extend(tokens)
        while len(self._lines) > self.max_lines:
            self._chars -= len(self._lines.popleft())
        while self._chars > self.max_chars and self._lines:
            self._chars -= len(self._lines.popleft())

    def joined(self) -> bytes:
        """Return the buffered lines joined with newlines."""
        return b"\n".join(self._lines)

    @property
    def lines(self) -> tuple[bytes, ...]:
        return tuple(self._lines)

    @property
    def char_count(self) -> int:
        return self._chars

    def __len__(self) -> int:
        return len(self._lines)


class TerminalHandler:
    """Runs the user's login shell on a pty and collects what it prints."""

    def __init__(self, shell: str | None = None, buffer: ScrollbackBuffer | None = None):
        self.shell = shell
        self.buffer = buffer if buffer is not None else ScrollbackBuffer()
        self._master_fd: int | None = None
        self._pid: int | None = None
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def fd(self) -> int | None:
        return self._master_fd

    @property
    def pid(self) -> int | None:
        return self._pid

    def start(self) -> None:
        """Fork a login shell attached to a new pseudo terminal."""
        shell = self.shell or os.environ.get("SHELL")
        if not shell:
            raise RuntimeError("no shell configured and SHELL is not set")
        pid, master_fd = pty.fork()
        if pid == 0:
            try:
                with contextlib.suppress(KeyError, OSError):
                    os.chdir(pwd.getpwuid(os.getuid()).pw_dir)
                os.environ["HTM_VERSION"] = HTM_VERSION
                os.execl(shell, shell, "-l")
            finally:
                os._exit(0)
        self._pid = pid
        self._master_fd = master_fd

    def poll_user_terminal(self, timeout: float = 0.01) -> bytes:
        """Return output produced since the last poll, or b"" if there is none."""
        if not self._running or self._master_fd is None:
            return b""
        try:
            ready, _, _ = select.select([self._master_fd], [], [], timeout)
            if not ready:
                return b""
            data = os.read(self._master_fd, READ_SIZE)
        except OSError as exc:
            if exc.errno == errno.EIO:
                self._session_ended()
            else:
                self._running = False
            return b""
        if data:
            self.buffer.append(data)
            return data
        self._session_ended()
        return b""

    def append_data(self, data: bytes) -> None:
        """Send keystrokes to the shell."""
        if self._master_fd is None:
            raise RuntimeError("terminal has not been started")
        view = memoryview(data)
        while view:
            written = os.write(self._master_fd, view)
            view = view[written:]

    def update_terminal_size(self, cols: int, rows: int) -> None:
        """Set the pty window size."""
        if self._master_fd is None:
            raise RuntimeError("terminal has not been started")
        fcntl.ioctl(self._master_fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))

    def stop(self) -> None:
        """Kill the shell."""
        if self._pid is not None:
            with contextlib.suppress(ProcessLookupError):
                os.kill(self._pid, signal.SIGKILL)
            with contextlib.suppress(ChildProcessError):
                os.waitpid(self._pid, 0)
        self._running = False

    def _session_ended(self) -> None:
        if self._pid is not None:
            with contextlib.suppress(ChildProcessError):
                os.waitpid(self._pid, 0)
        self._running = False