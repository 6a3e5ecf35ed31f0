"""Event sink and terminal output for inetspeed.

The measurement code only classifies what it reports (banner, header,
info, ...) by sending :class:`Event` objects through a :class:`Bus`.
A renderer decides how each kind looks: :class:`RichRenderer` for an
interactive terminal, :class:`PlainRenderer` for logs and pipes.
"""

from __future__ import annotations

import enum
import sys
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol, TextIO

from rich.console import Console
from rich.live import Live
from rich.text import Text

console = Console(stderr=True, highlight=False)


class EventKind(enum.Enum):
    BANNER = "banner"
    HEADER = "header"
    INFO = "info"
    WARN = "warn"
    RESULT = "result"
    KV = "kv"
    LINE = "line"
    PROGRESS = "progress"
    FATAL = "fatal"


@dataclass
class Event:
    kind: EventKind
    label: str = ""
    value: str = ""
    time: float = field(default_factory=time.time)


class Renderer(Protocol):
    def render(self, event: Event) -> None: ...


class Bus:
    """Hands events to a renderer in the order they were sent."""

    def __init__(self, renderer: Renderer):
        self.renderer = renderer

    def send(self, event: Event) -> None:
        event.time = time.time()
        self.renderer.render(event)

    def banner(self, value: str) -> None:
        self.send(Event(EventKind.BANNER, value=value))

    def header(self, value: str) -> None:
        self.send(Event(EventKind.HEADER, value=value))

    def info(self, value: str) -> None:
        self.send(Event(EventKind.INFO, value=value))

    def warn(self, value: str) -> None:
        self.send(Event(EventKind.WARN, value=value))

    def result(self, value: str) -> None:
        self.send(Event(EventKind.RESULT, value=value))

    def kv(self, label: str, value: str) -> None:
        self.send(Event(EventKind.KV, label=label, value=value))

    def line(self) -> None:
        self.send(Event(EventKind.LINE))

    def progress(self, label: str, value: str) -> None:
        self.send(Event(EventKind.PROGRESS, label=label, value=value))

    def fatal(self, value: str) -> None:
        self.send(Event(EventKind.FATAL, value=value))

    def close(self) -> None:
        close = getattr(self.renderer, "close", None)
        if close is not None:
            close()


class CollectingRenderer:
    """Keeps every event; used for capturing output."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def render(self, event: Event) -> None:
        self.events.append(event)

    def of_kind(self, kind: EventKind) -> list[Event]:
        return [e for e in self.events if e.kind == kind]


# ── Interactive terminal ──────────────────────────────────────────────


class RichRenderer:
    """Colored output; progress lines are redrawn in place."""

    def __init__(self, out: Optional[Console] = None):
        self.console = out or console
        self.live: Optional[Live] = None

    def _progress_text(self, event: Event) -> Text:
        return Text(f"  [{event.label}] {event.value}", style="dim")

    def _end_progress(self) -> None:
        if self.live is not None:
            self.live.stop()
            self.live = None

    def render(self, event: Event) -> None:
        if event.kind == EventKind.PROGRESS:
            if self.live is None:
                self.live = Live(
                    self._progress_text(event),
                    console=self.console,
                    transient=True,
                    auto_refresh=False,
                )
                self.live.start()
            else:
                self.live.update(self._progress_text(event), refresh=True)
            return

        self._end_progress()
        c = self.console
        value = Text(event.value)

        if event.kind == EventKind.BANNER:
            c.print()
            c.print(Text("  " + event.value, style="bold cyan"))
        elif event.kind == EventKind.HEADER:
            c.print()
            c.print(Text("  ▸ " + event.value, style="bold cyan"))
        elif event.kind == EventKind.INFO:
            c.print(Text.assemble("  ", ("[+]", "bold green"), " ", value))
        elif event.kind == EventKind.WARN:
            c.print(Text.assemble("  ", ("[!]", "bold yellow"), " ", value))
        elif event.kind == EventKind.RESULT:
            c.print(Text("      ➜  " + event.value, style="bold green"))
        elif event.kind == EventKind.KV:
            c.print(Text.assemble("  ", (f"{event.label + ':':<18}", "bold dim"), " ", value))
        elif event.kind == EventKind.LINE:
            c.print(Text("─" * 60, style="dim"))
        elif event.kind == EventKind.FATAL:
            c.print(Text.assemble("  ", ("[✗]", "bold red"), " ", value))

    def close(self) -> None:
        self._end_progress()


# ── Plain text ────────────────────────────────────────────────────────


class PlainRenderer:
    """Line-oriented output without colors or cursor movement."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stderr

    def _write(self, text: str) -> None:
        self.stream.write(text + "\n")
        self.stream.flush()

    def render(self, event: Event) -> None:
        kind = event.kind
        if kind == EventKind.BANNER:
            self._write(f"\n  {event.value}")
        elif kind == EventKind.HEADER:
            self._write(f"\n  > {event.value}")
        elif kind == EventKind.INFO:
            self._write(f"  [+] {event.value}")
        elif kind == EventKind.WARN:
            self._write(f"  [!] {event.value}")
        elif kind == EventKind.RESULT:
            self._write(f"      -> {event.value}")
        elif kind == EventKind.KV:
            self._write(f"  {event.label + ':':<18} {event.value}")
        elif kind == EventKind.LINE:
            self._write("  " + "-" * 56)
        elif kind == EventKind.PROGRESS:
            self._write(f"  [{event.label}] {event.value}")
        elif kind == EventKind.FATAL:
            self._write(f"  [X] {event.value}")


def is_tty() -> bool:
    """True when stderr is attached to an interactive terminal."""
    try:
        return sys.stderr.isatty()
    except (AttributeError, ValueError):
        return False


def new_bus(interactive: bool) -> Bus:
    return Bus(RichRenderer() if interactive else PlainRenderer())


def render_prompt(message: str) -> None:
    """Print an inline question; the answer is read by the caller."""
    console.print(Text.assemble("  ", ("[?]", "bold cyan"), " ", message), end="")
