"""Parsing of the client's destination, jumphost, keepalive and id/passkey arguments."""

from __future__ import annotations

import re
from dataclasses import dataclass

PASSKEY_LENGTH = 32
_WHITESPACE = " \n\r\t"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class HostArgError(ValueError):
    """Raised when a command-line host, jumphost or credential argument is invalid."""


@dataclass(frozen=True)
class Destination:
    """Where to connect: an optional user, a host and a port."""

    host: str
    port: int
    username: str | None = None


def _parse_port(text: str, original: str) -> int:
    match = _LEADING_INT.match(text)
    if match is None:
        raise HostArgError(f"Invalid port in host positional arg: {original}")
    return int(match.group(1))


def parse_host_arg(host_arg: str, default_port: int) -> Destination:
    """Split ``[user@]host[:port]`` into its parts; IPv6 addresses are accepted."""
    original = host_arg
    username = None
    if "@" in host_arg:
        username, host_arg = host_arg.split("@", 1)

    port = default_port
    colon_count = host_arg.count(":")
    if colon_count == 1:
        host_arg, port_text = host_arg.rsplit(":", 1)
        port = _parse_port(port_text, original)
    elif colon_count >= 2 and "::" not in host_arg:
        if colon_count == 8:
            host_arg, port_text = host_arg.rsplit(":", 1)
            port = _parse_port(port_text, original)
        elif colon_count != 7:
            raise HostArgError(f"Invalid host positional arg: {original}")

    return Destination(host=host_arg, port=port, username=username)


def parse_proxy_jump(proxy_jump: str) -> str:
    """Return the jumphost of an ssh ProxyJump value, dropping any port."""
    return proxy_jump.split(":", 1)[0]


def resolve_jumphost(jumphost: str, username: str) -> tuple[str, str]:
    """Return (jumphost for ssh, host name to connect to) for ``jumphost``.

    A jumphost without a user gets ``username`` prepended for ssh.
    """
    if "@" in jumphost:
        return jumphost, jumphost.split("@", 1)[1]
    return f"{username}@{jumphost}", jumphost


def validate_keepalive(duration: int, maximum: int) -> int:
    """Return ``duration`` if it lies between 1 and ``maximum`` seconds."""
    if duration < 1 or duration > maximum:
        raise HostArgError(f"Keep-alive duration must between 1 and {maximum} seconds")
    return duration


def split_idpasskey(pair: str) -> tuple[str, str]:
    """Split an ``id/passkey`` answer into its id and its 32-character passkey."""
    trimmed = pair.rstrip(_WHITESPACE)
    if "/" not in trimmed:
        raise HostArgError(f"Invalid idPasskey id/key pair: {trimmed}")
    id_, passkey = trimmed.split("/", 1)
    if len(passkey) != PASSKEY_LENGTH:
        raise HostArgError(f"Invalid/missing passkey: {passkey} {len(passkey)}")
    return id_, passkey