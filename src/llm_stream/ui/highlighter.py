from __future__ import annotations
import io

from rich.console import Console
from rich.syntax import Syntax

# "ansi" means terminal-native colours: rich's ANSI theme on the 16-colour palette.
ANSI_THEME = "ansi"
_ANSI_SYNTAX_THEME = "ansi_dark"


class SyntaxHighlighter:
    """
    Renders bytes to an ANSI string with rich's Syntax (pygments underneath).
    Stateless: every call highlights the whole input from scratch.
    """

    def __init__(self, language: str = "markdown", theme: str = ANSI_THEME, *, color: bool = True):
        self.language = language
        self.theme = theme
        self.color = color
        if theme == ANSI_THEME:
            self._syntax_theme, self._color_system = _ANSI_SYNTAX_THEME, "standard"
        else:
            self._syntax_theme, self._color_system = theme, "truecolor"

    def render(self, data: bytes) -> str:
        # mid-stream bytes may end inside a multi-byte sequence
        code = data.decode("utf-8", errors="replace")
        if not self.color:
            return code

        syntax = Syntax(code, self.language, theme=self._syntax_theme, background_color="default")
        text = syntax.highlight(code)
        console = Console(
            file=io.StringIO(),
            force_terminal=True,
            color_system=self._color_system,
            highlight=False,
            legacy_windows=False,
        )
        console.print(text, end="", soft_wrap=True)
        return console.file.getvalue()
