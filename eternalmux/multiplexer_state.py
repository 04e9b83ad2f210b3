"""The tab, split and pane layout kept by the multiplexer daemon."""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from .protocol import HeaderCode, encoded_length, write_b64, write_length
from .terminal_handler import TerminalHandler

UUID_LENGTH = 36


class MultiplexerError(Exception):
    """Raised when a request does not fit the current layout."""


@dataclass
class Pane:
    id: str
    parent_id: str = ""
    terminal: Any = None

    def to_json(self) -> dict:
        return {"id": self.id}


@dataclass
class Split:
    id: str
    parent_id: str = ""
    vertical: bool = False
    panes_or_splits: list[str] = field(default_factory=list)
    sizes: list[float] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "vertical": self.vertical,
            "panesOrSplits": list(self.panes_or_splits),
            "sizes": list(self.sizes),
        }


@dataclass
class Tab:
    id: str
    pane_or_split_id: str = ""
    order: int = 0

    def to_json(self) -> dict:
        return {"id": self.id, "order": self.order, "paneOrSplit": self.pane_or_split_id}


def _start_terminal() -> TerminalHandler:
    terminal = TerminalHandler()
    terminal.start()
    return terminal


def _new_id() -> str:
    return str(uuid.uuid4())


def _replace_child(split: Split, old_id: str, new_id: str) -> None:
    try:
        index = split.panes_or_splits.index(old_id)
    except ValueError:
        raise MultiplexerError(f"split {split.id} does not contain {old_id}") from None
    split.panes_or_splits[index] = new_id


class MultiplexerState:
    """Layout of tabs, splits and panes, each pane backed by a terminal."""

    def __init__(
        self,
        terminal_factory: Callable[[], Any] = _start_terminal,
        id_factory: Callable[[], str] = _new_id,
        shell: str | None = None,
    ):
        self._terminal_factory = terminal_factory
        self._new_id = id_factory
        self._shell = shell
        self.tabs: dict[str, Tab] = {}
        self.panes: dict[str, Pane] = {}
        self.splits: dict[str, Split] = {}
        self.closed: set[str] = set()

        tab = Tab(id=self._new_id(), order=0)
        self.tabs[tab.id] = tab
        pane = Pane(id=self._new_id(), parent_id=tab.id, terminal=self._terminal_factory())
        self.panes[pane.id] = pane
        tab.pane_or_split_id = pane.id

    @property
    def num_panes(self) -> int:
        return len(self.panes)

    def to_json(self) -> dict:
        """Return the layout as a JSON-ready dictionary."""
        shell = self._shell if self._shell is not None else os.environ.get("SHELL")
        if shell is None:
            raise MultiplexerError("SHELL is not set")
        state: dict[str, Any] = {"shell": shell}
        for key, items in (("tabs", self.tabs), ("panes", self.panes), ("splits", self.splits)):
            if items:
                state[key] = {item_id: items[item_id].to_json() for item_id in sorted(items)}
        return state

    def to_json_string(self) -> str:
        return json.dumps(self.to_json(), separators=(",", ":"), sort_keys=True)

    def append_data(self, uid: str, data: bytes) -> None:
        """Send keystrokes to the pane ``uid``."""
        pane = self.panes.get(uid)
        if pane is None:
            raise MultiplexerError(f"tried to write to non-existent terminal: {uid}")
        pane.terminal.append_data(data)

    def new_tab(self, tab_id: str, pane_id: str) -> None:
        self._fatal_if_found(tab_id)
        self._fatal_if_found(pane_id)
        tab = Tab(id=tab_id, pane_or_split_id=pane_id, order=len(self.tabs))
        self.tabs[tab_id] = tab
        self.panes[pane_id] = Pane(id=pane_id, parent_id=tab_id, terminal=self._terminal_factory())

    def new_split(self, source_id: str, pane_id: str, vertical: bool) -> None:
        """Split pane ``source_id``, adding a new pane ``pane_id``."""
        self._fatal_if_found(pane_id)
        source_pane = self._get_pane(source_id)
        parent_split = self.splits.get(source_pane.parent_id)

        if parent_split is not None and parent_split.vertical == vertical:
            new_pane = self._add_pane(pane_id)
            parent_split.sizes = [size / 2.0 for size in parent_split.sizes]
            parent_split.sizes.append(0.5)
            parent_split.panes_or_splits.append(pane_id)
            new_pane.parent_id = parent_split.id
            return

        new_split = Split(
            id=self._new_id(),
            vertical=vertical,
            panes_or_splits=[source_id, pane_id],
            sizes=[0.5, 0.5],
        )
        if parent_split is not None:
            _replace_child(parent_split, source_id, new_split.id)
            new_split.parent_id = parent_split.id
        else:
            tab = self._get_tab(source_pane.parent_id)
            new_split.parent_id = tab.id
            tab.pane_or_split_id = new_split.id

        self.splits[new_split.id] = new_split
        new_pane = self._add_pane(pane_id)
        new_pane.parent_id = new_split.id
        source_pane.parent_id = new_split.id

    def close_pane(self, pane_id: str) -> None:
        """Stop the pane's terminal and remove it, collapsing splits as needed."""
        if pane_id in self.closed:
            return
        pane = self.panes.pop(pane_id, None)
        if pane is None:
            raise MultiplexerError(f"tried to close a pane that doesn't exist: {pane_id}")
        self.closed.add(pane_id)
        pane.terminal.stop()

        tab = self.tabs.get(pane.parent_id)
        if tab is not None:
            for other in self.tabs.values():
                if other.order > tab.order:
                    other.order -= 1
            owner = next(
                (tab_id for tab_id, t in self.tabs.items() if t.pane_or_split_id == pane.id), None
            )
            if owner is None:
                raise MultiplexerError("could not find tab")
            del self.tabs[owner]
            return

        split = self._get_split(pane.parent_id)
        try:
            index = split.panes_or_splits.index(pane.id)
        except ValueError:
            raise MultiplexerError(
                f"parent split {split.id} did not contain child pane {pane.id}"
            ) from None
        del split.panes_or_splits[index]
        del split.sizes[index]

        if len(split.panes_or_splits) > 1:
            new_size = len(split.sizes)
            old_size = new_size + 1
            split.sizes = [size * old_size / new_size for size in split.sizes]
            return
        if not split.panes_or_splits:
            raise MultiplexerError(f"split {split.id} has no children left")

        survivor = self._get_pane(split.panes_or_splits[0])
        survivor.parent_id = split.parent_id
        parent_tab = self.tabs.get(survivor.parent_id)
        if parent_tab is not None:
            parent_tab.pane_or_split_id = survivor.id
        else:
            _replace_child(self._get_split(survivor.parent_id), split.id, survivor.id)
        del self.splits[split.id]

    def update(self, sock) -> None:
        """Forward new terminal output to ``sock`` and report finished panes."""
        for pane_id in sorted(self.panes):
            terminal = self.panes[pane_id].terminal
            data = terminal.poll_user_terminal()
            if data:
                self._send_append(sock, pane_id, data)
            if not terminal.running:
                self.close_pane(pane_id)
                encoded_id = pane_id.encode()
                sock.sendall(HeaderCode.SERVER_CLOSE_PANE.value)
                write_length(sock, len(encoded_id))
                sock.sendall(encoded_id)
                break

    def send_terminal_buffers(self, sock) -> None:
        """Send each pane's scrollback to ``sock``."""
        for pane_id in sorted(self.panes):
            buffer = self.panes[pane_id].terminal.buffer
            if len(buffer):
                self._send_append(sock, pane_id, buffer.joined())

    def resize_pane(self, pane_id: str, cols: int, rows: int) -> None:
        self._get_pane(pane_id).terminal.update_terminal_size(cols, rows)

    def _add_pane(self, pane_id: str) -> Pane:
        pane = Pane(id=pane_id, terminal=self._terminal_factory())
        self.panes[pane_id] = pane
        return pane

    @staticmethod
    def _send_append(sock, pane_id: str, data: bytes) -> None:
        encoded_id = pane_id.encode()
        sock.sendall(HeaderCode.APPEND_TO_PANE.value)
        write_length(sock, encoded_length(data) + len(encoded_id))
        sock.sendall(encoded_id)
        write_b64(sock, data)

    def _get_tab(self, tab_id: str) -> Tab:
        try:
            return self.tabs[tab_id]
        except KeyError:
            raise MultiplexerError(f"tried to get a tab that doesn't exist: {tab_id}") from None

    def _get_pane(self, pane_id: str) -> Pane:
        try:
            return self.panes[pane_id]
        except KeyError:
            raise MultiplexerError(f"tried to get a pane that doesn't exist: {pane_id}") from None

    def _get_split(self, split_id: str) -> Split:
        try:
            return self.splits[split_id]
        except KeyError:
            raise MultiplexerError(f"tried to get a split that doesn't exist: {split_id}") from None

    def _fatal_if_found(self, item_id: str) -> None:
        for name, items in (("panes", self.panes), ("splits", self.splits), ("tabs", self.tabs)):
            if item_id in items:
                raise MultiplexerError(f"found unexpected id in {name}: {item_id}")