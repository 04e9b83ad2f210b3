"""Starting the remote terminal over ssh and reading back its id and passkey."""

from __future__ import annotations

import logging
import os
import secrets
import string
import subprocess
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

ETTERMINAL_BIN = "etterminal"
ID_LENGTH = 16
PASSKEY_LENGTH = 32
_IDPASSKEY_MARKER = "IDPASSKEY:"
_ALPHANUM = string.ascii_letters + string.digits


class SshSetupError(Exception):
    """Raised when the remote terminal could not be started or did not answer."""


def gen_random_alphanum(length: int) -> str:
    """Return a random string of ASCII letters and digits."""
    return "".join(secrets.choice(_ALPHANUM) for _ in range(length))


def gen_command(
    passkey: str,
    id_: str,
    client_term: str,
    user: str,
    kill: bool,
    etterminal_path: str,
    options: str,
) -> str:
    """Build the shell command that hands the id and passkey to the remote terminal."""
    etterminal_bin = etterminal_path or ETTERMINAL_BIN
    command = f"echo '{id_}/{passkey}_{client_term}' | {etterminal_bin} {options}"
    prefix = f"pkill etterminal -u {user}; sleep 0.5; " if kill else ""
    return prefix + command


def _split_pair(idpasskey: str) -> tuple[str, str]:
    parts = idpasskey.split("/")
    if len(parts) < 2:
        raise SshSetupError(f"Malformed id/passkey: {idpasskey}")
    return parts[0], parts[1]


def parse_idpasskey(output: str) -> tuple[str, str]:
    """Extract (id, passkey) from the remote terminal's output."""
    if not output:
        raise SshSetupError(
            "Error starting ET process through ssh, please make sure your ssh works first"
        )
    index = output.find(_IDPASSKEY_MARKER)
    if index < 0:
        raise SshSetupError(
            f"Error in authentication with etserver: {output}, please make sure you "
            "don't print anything in server's .bashrc/.zshrc"
        )
    start = index + len(_IDPASSKEY_MARKER)
    return _split_pair(output[start : start + ID_LENGTH + 1 + PASSKEY_LENGTH])


def parse_jump_idpasskey(output: str) -> tuple[str, str]:
    """Extract (id, passkey) from the jumphost terminal's output."""
    if not output:
        raise SshSetupError("etserver jumpclient failed to start")
    parts = output.split(":")
    if len(parts) < 2:
        raise SshSetupError(f"Error initializing connection: {output}")
    idpasskey = parts[1].rstrip(" \n\r\t")[: ID_LENGTH + 1 + PASSKEY_LENGTH]
    return _split_pair(idpasskey)


def _run_ssh(args: Sequence[str]) -> str:
    try:
        result = subprocess.run(["ssh", *args], stdout=subprocess.PIPE, text=True)
    except FileNotFoundError:
        return ""
    return result.stdout


def setup_ssh(
    user: str,
    host: str,
    host_alias: str,
    port: int,
    jumphost: str,
    jserver_fifo: str,
    kill: bool,
    vlevel: int,
    etterminal_path: str,
    server_fifo: str,
    ssh_options: Sequence[str],
    run_ssh: Callable[[list[str]], str] | None = None,
) -> str:
    """Start the remote terminal over ssh and return "id/passkey"."""
    run_ssh = run_ssh if run_ssh is not None else _run_ssh
    client_term = os.environ.get("TERM") or "xterm-256color"
    passkey = gen_random_alphanum(PASSKEY_LENGTH)
    # Older servers expect the client-made id to start with XXX.
    id_ = "XXX" + gen_random_alphanum(ID_LENGTH)[3:]

    cmd_options = f"--verbose={vlevel}"
    if server_fifo:
        cmd_options += f" --serverfifo={server_fifo}"
    script = gen_command(passkey, id_, client_term, user, kill, etterminal_path, cmd_options)

    ssh_args: list[str] = ["-J", jumphost] if jumphost else []
    ssh_args.append(f"{user}@{host_alias}" if user else host_alias)
    ssh_args.extend(f"-o{option}" for option in ssh_options)
    ssh_args.append(script)

    logger.debug("Trying ssh with args: %s", " ".join(ssh_args))
    id_, passkey = parse_idpasskey(run_ssh(ssh_args))
    logger.info("etserver started")

    if jumphost:
        jump_options = f"--verbose={vlevel}"
        if jserver_fifo:
            jump_options += f" --serverfifo={jserver_fifo}"
        jump_options += f" --jump --dsthost={host} --dstport={port}"
        jump_script = gen_command(
            passkey, id_, client_term, user, kill, etterminal_path, jump_options
        )
        id_, passkey = parse_jump_idpasskey(run_ssh([jumphost, jump_script]))

    if not id_ or not passkey:
        raise SshSetupError(f"Somehow missing id or passkey: {len(id_)} {len(passkey)}")
    return f"{id_}/{passkey}"