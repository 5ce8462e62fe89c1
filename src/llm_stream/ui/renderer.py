"""
Incremental terminal renderer.

Highlighting is not append-only: a late byte (closing a code fence, say) can
recolour lines already on screen. So every fragment re-highlights the whole
reply, and only the part of the new rendering that is not yet settled on the
terminal is written. Settled means every previously rendered line except the
last one; the last line is rewritten in place from column 0.
"""
from __future__ import annotations
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional, TextIO

from rich.control import Control

from llm_stream.core.errors import RenderError
from llm_stream.core.ports import Highlighter
from llm_stream.core.stream import Delta, DeltaStream, Fragment, StreamOutcome, TransportError
from llm_stream.ui.highlighter import SyntaxHighlighter

logger = logging.getLogger(__name__)

MOVE_TO_COLUMN_0 = str(Control.move_to_column(0))
SPINNER_BLANK = " " * 22
RESET_STYLE = "\x1b[0m"


def split_lines(text: str) -> List[str]:
    """Lines of `text` without terminators; a trailing newline does not open a new line."""
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def settled_line_count(previous_rendered_text: str) -> int:
    return max(len(split_lines(previous_rendered_text)) - 1, 0)


def unprinted_portion(previous_rendered_text: str, output: str) -> str:
    return "\n".join(split_lines(output)[settled_line_count(previous_rendered_text):])


@dataclass
class RenderState:
    accumulated_bytes: bytearray = field(default_factory=bytearray)
    previous_rendered_text: str = ""


class StreamRenderer:
    """
    Owns RenderState and the spinner for the lifetime of one reply.

    interactive=None detects a TTY on `out`. Non-interactive output bypasses
    highlighting entirely and receives the raw fragments, so piping stays clean.
    """

    def __init__(
        self,
        out: Optional[TextIO] = None,
        *,
        highlighter: Optional[Highlighter] = None,
        interactive: Optional[bool] = None,
        spinner=None,
        logger: Optional[logging.Logger] = None,
    ):
        self._out = out if out is not None else sys.stdout
        if interactive is None:
            isatty = getattr(self._out, "isatty", None)
            interactive = bool(isatty and isatty())
        self.interactive = interactive
        self._highlighter = highlighter or SyntaxHighlighter()
        self._spinner = spinner
        self._log = logger or logging.getLogger(__name__)

        self.state = RenderState()
        self._reply: List[str] = []
        self._spinner_done = False
        self._printed = False
        self._finished = False

    @property
    def reply(self) -> str:
        """Everything received so far, trimmed, for the conversation cache."""
        return "".join(self._reply).strip()

    @property
    def finished(self) -> bool:
        return self._finished

    def start(self) -> None:
        if self._spinner is not None and self.interactive and not self._spinner_done:
            self._spinner.start()

    def feed(self, delta: Delta) -> None:
        if self._finished:
            raise RuntimeError("reply already finished")
        if not delta.text:
            return
        self._reply.append(delta.text)
        self._stop_spinner()

        if not self.interactive:
            self._out.write(delta.text)
            self._out.flush()
            return

        state = self.state
        state.accumulated_bytes.extend(delta.text.encode("utf-8"))
        try:
            output = self._highlighter.render(bytes(state.accumulated_bytes))
        except Exception as e:
            raise RenderError(f"Highlighting failed: {e}") from e

        self._out.write(MOVE_TO_COLUMN_0 + unprinted_portion(state.previous_rendered_text, output))
        self._printed = True
        state.previous_rendered_text = output
        self._out.flush()

    def handle(self, outcome: StreamOutcome) -> bool:
        """Apply one outcome. Returns False once the reply has ended."""
        if isinstance(outcome, Fragment):
            self.feed(outcome.delta)
            return True
        if isinstance(outcome, TransportError) and not outcome.is_clean_eof:
            self.abort()
            raise outcome.error
        self.finish()
        return False

    def finish(self) -> str:
        if not self._finished:
            self._stop_spinner()
            self._finished = True
        return self.reply

    def abort(self) -> None:
        """Leave the terminal sane after a failure: no spinner, no dangling colour."""
        if self._finished:
            return
        self._finished = True
        self._stop_spinner()
        if self.interactive and self._printed:
            self._out.write(RESET_STYLE + "\n")
            self._out.flush()

    async def render(self, stream: DeltaStream) -> str:
        self.start()
        try:
            while self.handle(await stream.next()):
                pass
        except BaseException:
            self.abort()
            raise
        return self.reply

    def _stop_spinner(self) -> None:
        if self._spinner_done:
            return
        self._spinner_done = True
        if self._spinner is None or not self._spinner.running:
            return
        self._spinner.stop()
        self._out.write(MOVE_TO_COLUMN_0 + SPINNER_BLANK + MOVE_TO_COLUMN_0)
        self._out.flush()
        self._log.debug("spinner cleared")
