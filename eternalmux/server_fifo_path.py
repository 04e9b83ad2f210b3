"""Locating, creating and connecting to the server's router fifo."""

from __future__ import annotations

import errno
import logging
import os
import socket
import stat
from typing import Any, Callable, NamedTuple

logger = logging.getLogger(__name__)

ROUTER_FIFO_BASENAME = "etserver.idpasskey.fifo"
ROOT_FIFO_DIRECTORY = "/var/run"
ROOT_ROUTER_FIFO_NAME = ROOT_FIFO_DIRECTORY + "/" + ROUTER_FIFO_BASENAME


class ServerFifoError(Exception):
    """Raised when the fifo path cannot be set up or connected to."""


class RuntimeDir(NamedTuple):
    value: str
    is_default: bool


def _is_absolute(path: str | None) -> bool:
    return bool(path) and path.startswith("/")


def _get_home() -> str:
    home = os.environ.get("HOME")
    if home is None:
        raise ServerFifoError("Failed to get the value of the $HOME environment variable.")
    if not _is_absolute(home):
        raise ServerFifoError(f"Unexpected relative path for $HOME environment variable: {home}")
    return home


def get_xdg_runtime_dir() -> RuntimeDir:
    """Return $XDG_RUNTIME_DIR if absolute, otherwise $HOME/.local/share."""
    runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
    if _is_absolute(runtime_dir):
        return RuntimeDir(runtime_dir, False)
    return RuntimeDir(_get_home() + "/.local/share", True)


def _try_create_directory(path: str, mode: int) -> None:
    old_mask = os.umask(0)
    try:
        os.mkdir(path, mode)
    except FileExistsError:
        pass
    except OSError as exc:
        raise ServerFifoError(f"Unexpected result creating {path}: {exc.strerror}") from exc
    finally:
        os.umask(old_mask)


def _is_root(root: bool | None) -> bool:
    return root if root is not None else os.geteuid() == 0


def connect_unix(path: str) -> socket.socket:
    """Connect a Unix stream socket to ``path``."""
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(path)
    except OSError:
        sock.close()
        raise
    return sock


def _connection_error(exc: OSError | None) -> ServerFifoError:
    code = exc.errno if exc is not None else None
    if code == errno.ECONNREFUSED:
        return ServerFifoError(
            "Error:  The et daemon is not running.  Please (re)start the et daemon on the server."
        )
    reason = os.strerror(code) if code is not None else str(exc)
    return ServerFifoError(f"Error:  Connection error communicating with et daemon: {reason}.")


class ServerFifoPath:
    """Works out where the router fifo lives, for both server and client."""

    def __init__(self, root: bool | None = None):
        self._path_override: str | None = None
        self._root = root

    @property
    def is_root(self) -> bool:
        return _is_root(self._root)

    def set_path_override(self, path: str) -> None:
        """Use ``path`` instead of the detected location."""
        if not path:
            raise ServerFifoError("Server fifo path must not be empty")
        self._path_override = path

    def create_directories_if_required(self) -> None:
        """Create and verify the per-user fifo directory when not running as root."""
        if self._path_override is not None or self.is_root:
            return

        runtime_dir = get_xdg_runtime_dir()
        if runtime_dir.is_default:
            home = _get_home()
            _try_create_directory(home + "/.local", 0o755)
            _try_create_directory(home + "/.local/share", 0o755)

        etserver_dir = runtime_dir.value + "/etserver"
        _try_create_directory(etserver_dir, 0o700)

        try:
            info = os.stat(etserver_dir)
        except OSError as exc:
            raise ServerFifoError(
                f"Failed to create server fifo directory: {etserver_dir}\nError: {exc.strerror}"
            ) from exc

        euid = os.geteuid()
        if info.st_uid != euid:
            raise ServerFifoError(
                f"Server fifo directory must be owned by the current user: {etserver_dir}\n"
                f"Expected euid={euid}, actual={info.st_uid}"
            )
        if not stat.S_ISDIR(info.st_mode):
            raise ServerFifoError(f"Server fifo directory must be a directory: {etserver_dir}")
        if info.st_mode & (stat.S_IWGRP | stat.S_IWOTH):
            raise ServerFifoError(
                "Server fifo directory must not provide write access to group/other: "
                f"{etserver_dir}"
            )

    def get_path_for_creation(self) -> str:
        """Return the path at which the server should create the fifo."""
        if self._path_override is not None:
            return self._path_override
        if self.is_root:
            return ROOT_ROUTER_FIFO_NAME
        return get_xdg_runtime_dir().value + "/etserver/" + ROUTER_FIFO_BASENAME

    def get_endpoint_for_connect(self) -> str | None:
        """Return the overridden path, or None to detect it on connect."""
        return self._path_override

    @staticmethod
    def detect_and_connect(
        specific_endpoint: str | None,
        connect: Callable[[str], Any] | None = None,
    ) -> Any:
        """Connect to ``specific_endpoint`` or try the root and then the user location."""
        connect = connect if connect is not None else connect_unix
        if specific_endpoint is not None:
            try:
                return connect(specific_endpoint)
            except OSError as exc:
                raise _connection_error(exc) from exc

        try:
            return connect(ROOT_ROUTER_FIFO_NAME)
        except OSError as exc:
            last_error = exc
            logger.debug("Cannot connect to %s: %s", ROOT_ROUTER_FIFO_NAME, exc)

        if not _is_root(None):
            path = get_xdg_runtime_dir().value + "/etserver/" + ROUTER_FIFO_BASENAME
            try:
                return connect(path)
            except OSError as exc:
                last_error = exc

        raise _connection_error(last_error) from last_error