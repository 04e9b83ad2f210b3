import os
import shutil
import socket
import tempfile

import pytest

from eternalmux.htm_client import HtmClient
from eternalmux.ipc import IpcError


@pytest.fixture
def listener():
    directory = tempfile.mkdtemp(prefix="em")
    path = os.path.join(directory, "s")
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.bind(path)
    sock.listen()
    yield path, sock
    sock.close()
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
def pipes():
    stdin_r, stdin_w = os.pipe()
    stdout_r, stdout_w = os.pipe()
    yield stdin_r, stdin_w, stdout_r, stdout_w
    for fd in (stdin_r, stdin_w, stdout_r, stdout_w):
        try:
            os.close(fd)
        except OSError:
            pass


def test_connect_failure_raises():
    directory = tempfile.mkdtemp(prefix="em")
    try:
        with pytest.raises(IpcError):
            HtmClient(os.path.join(directory, "missing"), retries=2, retry_delay=0)
    finally:
        shutil.rmtree(directory, ignore_errors=True)


def test_output_is_copied_until_daemon_closes(listener, pipes):
    path, sock = listener
    stdin_r, _, stdout_r, stdout_w = pipes
    client = HtmClient(path, retries=1, retry_delay=0)
    conn, _ = sock.accept()
    conn.sendall(b"hello")
    conn.close()
    client.run(stdin_r, stdout_w)
    assert os.read(stdout_r, 100) == b"hello"
    assert client.endpoint is None


def test_session_end_byte_stops_client(listener, pipes):
    path, sock = listener
    stdin_r, _, stdout_r, stdout_w = pipes
    client = HtmClient(path, retries=1, retry_delay=0)
    conn, _ = sock.accept()
    conn.sendall(b"D")
    client.run(stdin_r, stdout_w)
    assert client.endpoint is None
    os.set_blocking(stdout_r, False)
    with pytest.raises(BlockingIOError):
        os.read(stdout_r, 100)
    conn.close()


def test_stdin_is_forwarded_then_eof_raises(listener, pipes):
    path, sock = listener
    stdin_r, stdin_w, _, stdout_w = pipes
    client = HtmClient(path, retries=1, retry_delay=0)
    conn, _ = sock.accept()
    os.write(stdin_w, b"keys")
    os.close(stdin_w)
    with pytest.raises(IpcError):
        client.run(stdin_r, stdout_w)
    assert conn.recv(100) == b"keys"
    conn.close()
    client.endpoint.close()