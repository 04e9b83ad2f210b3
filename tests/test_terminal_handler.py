import fcntl
import struct
import termios
import time

import pytest

from eternalmux.terminal_handler import ScrollbackBuffer, TerminalHandler


def test_append_splits_lines():
    buf = ScrollbackBuffer()
    buf.append(b"ab\ncd")
    assert buf.lines == (b"ab", b"cd")
    assert buf.char_count == 4


def test_append_continues_last_line():
    buf = ScrollbackBuffer()
    buf.append(b"ab")
    buf.append(b"c\nd")
    assert buf.lines == (b"abc", b"d")


def test_empty_append_is_ignored():
    buf = ScrollbackBuffer()
    buf.append(b"")
    assert len(buf) == 0
    assert buf.joined() == b""


def test_line_limit_drops_oldest():
    buf = ScrollbackBuffer(max_lines=3)
    buf.append(b"1\n2\n3\n4\n5")
    assert buf.lines == (b"3", b"4", b"5")
    assert buf.char_count == sum(len(line) for line in buf.lines)


def test_char_limit_drops_oldest():
    buf = ScrollbackBuffer(max_chars=5)
    buf.append(b"aaa\nbbb\nc")
    assert buf.lines == (b"bbb", b"c")
    assert buf.char_count <= 5


def test_joined_round_trip():
    buf = ScrollbackBuffer()
    buf.append(b"x\ny\n")
    buf.append(b"z")
    assert buf.joined() == b"x\ny\nz"


@pytest.fixture
def shell():
    handler = TerminalHandler(shell="/bin/sh")
    handler.start()
    yield handler
    handler.stop()


def _poll_until(handler, predicate, deadline=10.0):
    collected = b""
    end = time.monotonic() + deadline
    while time.monotonic() < end:
        collected += handler.poll_user_terminal(0.05)
        if predicate(collected):
            break
    return collected


def test_shell_echoes_command_output(shell):
    shell.append_data(b"printf 'ab''cd\\n'\n")
    output = _poll_until(shell, lambda out: b"abcd" in out)
    assert b"abcd" in output
    assert b"abcd" in shell.buffer.joined()


def test_shell_exit_stops_handler(shell):
    shell.append_data(b"exit\n")
    _poll_until(shell, lambda _: not shell.running)
    assert shell.running is False
    assert shell.poll_user_terminal(0.01) == b""


def test_update_terminal_size(shell):
    shell.update_terminal_size(100, 40)
    raw = fcntl.ioctl(shell.fd, termios.TIOCGWINSZ, b"\x00" * 8)
    rows, cols, _, _ = struct.unpack("HHHH", raw)
    assert (cols, rows) == (100, 40)


def test_stop_marks_not_running(shell):
    shell.stop()
    assert shell.running is False
    assert shell.poll_user_terminal(0.01) == b""


def test_append_before_start_raises():
    handler = TerminalHandler(shell="/bin/sh")
    with pytest.raises(RuntimeError):
        handler.append_data(b"x")