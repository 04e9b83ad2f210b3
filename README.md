# eternalmux

A headless terminal multiplexer for POSIX systems. A long-lived daemon
(`htmd`) owns a set of shells on pseudo-terminals, arranged in tabs and
splits; a small client (`htm`) relays your terminal to the daemon over a
per-user Unix socket. When a client attaches, the daemon sends it the whole
layout and each pane's recent scrollback.

The package also holds helpers for bootstrapping a remote shell over ssh:
locating the server's router fifo, starting the remote terminal process
through `ssh` and reading back its id and passkey, parsing
`[user@]host[:port]` arguments, and buffering error telemetry.

## Requirements

- Python 3.10 or later
- A POSIX system with pseudo-terminal support
- `ssh` on the `PATH` for `eternalmux.ssh_setup.setup_ssh`
- `pgrep` and `pkill` on the `PATH` for `htm` to find and stop the daemon

There are no third-party runtime dependencies.

## Commands

### `htmd`

The multiplexer daemon. It listens on the Unix socket returned by
`eternalmux.htm_server.get_pipe_name()` (`htm.<uid>.ipc` in the temporary
directory), starts `$SHELL -l` in a first tab, and serves one client at a
time; a newly accepted client replaces the current one. It logs to
`htmd.log` in the temporary directory.

```
htmd
```

The daemon stops when the last pane is closed by the client or when it
receives the `x` debug key.

### `htm`

```
htm [-x]
```

- `-x`, `--kill-other-sessions` — run `pkill` on your running `htmd`
  before attaching.
- `-h`, `--help` — print usage.

`htm` starts `htmd` in a new session if `pgrep` finds none, puts the
terminal in raw mode (when stdin is a terminal), then copies stdin to the
daemon and the daemon's bytes to stdout. It logs to `htm.log` in the
temporary directory. When the daemon closes the connection or sends a lone
session-end byte, and on `SIGTERM`, it writes `ESC [$$$q` to stdout and
restores the saved terminal settings.

The bytes the daemon sends are framed messages (see below), so `htm` is
meant to sit behind a front end that understands the protocol; on attach
the daemon first writes `ESC [###q` to switch that front end into
multiplexer mode.

## Wire protocol

Each message is a one-byte header from `eternalmux.protocol.HeaderCode`
followed by a length — a signed 32-bit little-endian integer, base64
encoded — and a body. Pane, tab and split ids are 36-character UUID
strings; terminal data travels base64 encoded.

Client to daemon: `INSERT_KEYS`, `INSERT_DEBUG_KEYS`, `NEW_TAB`,
`NEW_SPLIT`, `RESIZE_PANE`, `CLIENT_CLOSE_PANE`. Daemon to client:
`INIT_STATE` (the layout as JSON), `APPEND_TO_PANE`, `SERVER_CLOSE_PANE`,
`DEBUG_LOG`, and a lone `SESSION_END` byte when the daemon drops the
connection.

Debug keys, sent in an `INSERT_DEBUG_KEYS` message:

- `Esc` — disconnect this client; the daemon keeps running.
- `x` — shut the daemon down.
- `d` — log the current layout as JSON.

`eternalmux.protocol` provides `encoded_length`, `read_exact`, `write_b64`,
`read_b64`, `write_length` and `read_length` for working with the framing.

## Library use

- `eternalmux.multiplexer_state.MultiplexerState` keeps tabs, panes and
  splits. By default each pane starts a shell through `TerminalHandler`;
  pass `terminal_factory`, `id_factory` and `shell` to supply your own.
  It offers `new_tab`, `new_split`, `close_pane`, `resize_pane`,
  `append_data`, `update`, `send_terminal_buffers`, `num_panes`, and
  `to_json` / `to_json_string`. Invalid requests raise `MultiplexerError`.
- `eternalmux.terminal_handler.TerminalHandler` runs one login shell on a
  pty (`start`, `poll_user_terminal`, `append_data`,
  `update_terminal_size`, `stop`). Its `ScrollbackBuffer` keeps at most
  1024 lines and 131072 characters.
- `eternalmux.ipc` provides `IpcPairServer` (abstract `recover`,
  `poll_accept`, `close`) and `IpcPairClient`, which retries the connect
  five times; failures raise `IpcError`.
- `eternalmux.htm_server.HtmServer` and `eternalmux.htm_client.HtmClient`
  are the daemon and client behind the two commands.

Remote-shell helpers:

- `eternalmux.server_fifo_path.ServerFifoPath` gives the router fifo path
  (an override, `/var/run/etserver.idpasskey.fifo` for root, or
  `etserver/etserver.idpasskey.fifo` under `$XDG_RUNTIME_DIR` or
  `~/.local/share` otherwise), creates and checks the per-user directory,
  and `detect_and_connect` tries the root location, then the user one.
  Errors raise `ServerFifoError`.
- `eternalmux.ssh_setup.setup_ssh` runs the remote terminal through ssh
  (optionally via a jumphost) and returns `"id/passkey"`; `gen_command`,
  `gen_random_alphanum`, `parse_idpasskey` and `parse_jump_idpasskey` are
  its parts. Failures raise `SshSetupError`.
- `eternalmux.host_args` has `parse_host_arg` (hostnames, IPv4 and IPv6,
  with or without a port, returning a `Destination`), `parse_proxy_jump`,
  `resolve_jumphost`, `validate_keepalive` and `split_idpasskey`; bad
  input raises `HostArgError`.
- `eternalmux.telemetry.TelemetryService` is a process-wide buffer of
  error reports (`create`, `get`, `destroy`, `exists`, `log_to_datadog`,
  `drain`, `shutdown`). It keeps a telemetry id in `et/telemetry.ini`
  under the config directory (`load_or_create_telemetry_id`). Setting
  `ET_NO_TELEMETRY` to any non-empty value disables it.

## What this package does not do

- It has no remote-shell client or server command of its own; the ssh,
  fifo and host-argument modules are building blocks only, and nothing
  reads ssh config files.
- It has no front end that draws tabs and splits from the protocol.
- `TelemetryService` sends nothing on its own: batches go only to a
  `sender` callable you pass to it.

## Running the tests

Install the `test` extra, then run `pytest` from the project root.