"""Line-width-aware output formatting for WRITE statements."""

from __future__ import annotations
from typing import Callable, Optional

DEFAULT_LINEWIDTH = 80
DEFAULT_FIELDWIDTH = 20

# Magnitudes strictly inside this range print in fixed point.
FIXED_LOW = 0.001
FIXED_HIGH = 100000.0


class OutputFormatter:
    def __init__(
        self,
        output_sink: Optional[Callable[[str], None]] = None,
        *,
        linewidth: int = DEFAULT_LINEWIDTH,
        fieldwidth: int = DEFAULT_FIELDWIDTH,
    ) -> None:
        if fieldwidth < 4:
            raise ValueError("field width must be at least 4")
        if linewidth < fieldwidth:
            raise ValueError("line width must be at least one field wide")
        self.output_sink = output_sink or (lambda text: print(text, end=""))
        self.linewidth = linewidth
        self.fieldwidth = fieldwidth
        self.column = 0

    @property
    def digits(self) -> int:
        return max(1, self.fieldwidth // 2 - 1)

    def reset(self) -> None:
        self.column = 0

    def _emit(self, text: str) -> None:
        self.output_sink(text)

    def _reserve(self, width: int) -> None:
        if self.column > 0 and self.column + width > self.linewidth:
            self._emit("\n")
            self.column = 0

    def format_scalar(self, x: float) -> str:
        if FIXED_LOW < abs(x) < FIXED_HIGH:
            return "%-*.*f" % (self.fieldwidth, self.digits, x)
        return "%-*.*e" % (self.fieldwidth, self.digits, x)

    def write_scalar(self, name: Optional[str], x: float) -> None:
        if name is not None:
            self._reserve(self.fieldwidth * 2)
            width = self.fieldwidth - 3
            self._emit("%*s = " % (width, name[:width]))
            self.column += self.fieldwidth
        else:
            self._reserve(self.fieldwidth)
        self._emit(self.format_scalar(x))
        self.column += self.fieldwidth

    def write_string(self, text: str) -> None:
        self._reserve(self.fieldwidth)
        self._emit("%-*.*s" % (self.fieldwidth, self.fieldwidth, text))
        self.column += self.fieldwidth

    def end_line(self) -> None:
        # a line filled exactly to the margin has already wrapped on the device
        if self.column != self.linewidth:
            self._emit("\n")
        self.column = 0
