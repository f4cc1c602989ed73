"""Fit a string into a fixed rectangle by wrapping and shrinking the font.

The engine is a pure function of (text, width oracle, box, style bounds).
A width oracle is any callable ``measure(text, font_size) -> width`` for one
already-selected font, in the same unit as the box.
"""

import math
from dataclasses import dataclass, field
from typing import Callable

from reportlab.pdfbase import pdfmetrics


ELLIPSIS = "…"

WidthOracle = Callable[[str, float], float]


class TextFitError(ValueError):
    """Base class for text fitting failures."""


class InvalidGeometry(TextFitError):
    pass


class InvalidStyleBounds(TextFitError):
    pass


class OracleContractViolation(TextFitError):
    pass


def _is_positive(value: float) -> bool:
    return math.isfinite(value) and value > 0


@dataclass(frozen=True)
class Box:
    width: float
    height: float

    def __post_init__(self) -> None:
        if not _is_positive(self.width) or not _is_positive(self.height):
            raise InvalidGeometry(
                f"Box dimensions must be positive, got width={self.width} height={self.height}."
            )


@dataclass(frozen=True)
class StyleBounds:
    max_font_size: float = 13.0
    min_font_size: float = 8.0
    step_down: float = 0.5
    line_gap_multiplier: float = 1.23

    def __post_init__(self) -> None:
        if not _is_positive(self.min_font_size):
            raise InvalidStyleBounds(f"min_font_size must be positive, got {self.min_font_size}.")
        if not math.isfinite(self.max_font_size) or self.min_font_size > self.max_font_size:
            raise InvalidStyleBounds(
                f"min_font_size ({self.min_font_size}) exceeds max_font_size ({self.max_font_size})."
            )
        if not _is_positive(self.step_down):
            raise InvalidStyleBounds(f"step_down must be positive, got {self.step_down}.")
        if not _is_positive(self.line_gap_multiplier):
            raise InvalidStyleBounds(
                f"line_gap_multiplier must be positive, got {self.line_gap_multiplier}."
            )

    def line_height(self, font_size: float) -> float:
        return font_size * self.line_gap_multiplier

    def candidate_sizes(self) -> list[float]:
        """Font sizes to try, largest first, ``min_font_size`` included when on the grid.

        Sizes are derived from the step index, and a last size within float
        noise of ``min_font_size`` is snapped to it.
        """
        tolerance = self.step_down * 1e-6
        count = math.floor((self.max_font_size - self.min_font_size) / self.step_down + 1e-6)
        sizes = [self.max_font_size - index * self.step_down for index in range(count + 1)]
        if abs(sizes[-1] - self.min_font_size) <= tolerance:
            sizes[-1] = self.min_font_size
        return sizes


@dataclass(frozen=True)
class FitResult:
    lines: list[str]
    font_size: float
    line_height: float
    truncated: bool = field(default=False)

    @property
    def total_height(self) -> float:
        return len(self.lines) * self.line_height

    def as_dict(self) -> dict:
        return {
            "lines": list(self.lines),
            "font_size": self.font_size,
            "line_height": self.line_height,
            "total_height": self.total_height,
            "truncated": self.truncated,
        }


def checked_oracle(measure: WidthOracle) -> WidthOracle:
    """Wrap *measure* so a negative or non-finite width raises instead of leaking into layout."""

    def _measure(text: str, font_size: float) -> float:
        width = measure(text, font_size)
        try:
            value = float(width)
        except (TypeError, ValueError) as exc:
            raise OracleContractViolation(
                f"Width oracle returned a non-numeric value {width!r} for {text!r} at {font_size}."
            ) from exc
        if not math.isfinite(value) or value < 0:
            raise OracleContractViolation(
                f"Width oracle returned {value!r} for {text!r} at {font_size}."
            )
        return value

    return _measure


def reportlab_width_oracle(font_name: str) -> WidthOracle:
    """Measure text with a font registered in reportlab's pdfmetrics."""

    def _measure(text: str, font_size: float) -> float:
        return pdfmetrics.stringWidth(text, font_name, font_size)

    return _measure


def monospace_width_oracle(char_width_ratio: float = 0.6) -> WidthOracle:
    """Approximate every glyph as ``char_width_ratio * font_size`` wide."""

    def _measure(text: str, font_size: float) -> float:
        return char_width_ratio * font_size * len(text)

    return _measure


def tokenize(text: str) -> list[str]:
    return text.split()


def break_long_word(word: str, max_width: float, measure: WidthOracle, font_size: float) -> list[str]:
    """Split *word* into the longest prefixes that fit *max_width*.

    When a single character is already too wide, a two character fragment
    (or the last character) is taken anyway so the scan always advances.
    """
    if measure(word, font_size) <= max_width:
        return [word]

    parts: list[str] = []
    start = 0
    while start < len(word):
        end = start + 1
        while end <= len(word) and measure(word[start:end], font_size) <= max_width:
            end += 1

        if end == start + 1:
            end = min(start + 2, len(word))
        else:
            end -= 1

        parts.append(word[start:end])
        start = end

    return parts


def wrap_tokens(tokens: list[str], max_width: float, measure: WidthOracle, font_size: float) -> list[str]:
    """Greedy-pack pre-split tokens into lines no wider than *max_width*."""
    lines: list[str] = []
    current = ""
    for token in tokens:
        candidate = f"{current} {token}" if current else token
        if measure(candidate, font_size) <= max_width:
            current = candidate
            continue
        if current:
            lines.append(current)
        current = token
    if current:
        lines.append(current)
    return lines


def wrap_text(text: str, max_width: float, measure: WidthOracle, font_size: float) -> list[str]:
    tokens: list[str] = []
    for word in tokenize(text):
        tokens.extend(break_long_word(word, max_width, measure, font_size))
    return wrap_tokens(tokens, max_width, measure, font_size)


def ellipsize_line(line: str, max_width: float, measure: WidthOracle, font_size: float) -> str:
    """Append an ellipsis to *line*, dropping trailing characters until it fits."""
    while measure(f"{line}{ELLIPSIS}", font_size) > max_width and len(line) > 1:
        line = line[:-1].rstrip()
    return f"{line}{ELLIPSIS}"


def truncate_to_box(text: str, measure: WidthOracle, box: Box, style: StyleBounds) -> FitResult:
    font_size = style.min_font_size
    line_height = style.line_height(font_size)
    max_lines = max(1, math.floor(box.height / line_height))
    lines = wrap_text(text, box.width, measure, font_size)[:max_lines]
    if lines:
        lines[-1] = ellipsize_line(lines[-1], box.width, measure, font_size)
    return FitResult(lines=lines, font_size=font_size, line_height=line_height, truncated=True)


def fit_text(text: str, measure: WidthOracle, box: Box, style: StyleBounds | None = None) -> FitResult:
    """Wrap *text* at the largest font size whose lines fit inside *box*.

    Sizes run from ``style.max_font_size`` down to ``style.min_font_size`` in
    ``style.step_down`` decrements. If none fits, the text is wrapped at the
    minimum size, capped to the lines the box can hold and ellipsized.
    """
    if style is None:
        style = StyleBounds()
    if not isinstance(box, Box):
        raise InvalidGeometry(f"Expected a Box, got {type(box).__name__}.")
    if not isinstance(style, StyleBounds):
        raise InvalidStyleBounds(f"Expected StyleBounds, got {type(style).__name__}.")

    measure = checked_oracle(measure)

    if not tokenize(text):
        return FitResult(
            lines=[],
            font_size=style.max_font_size,
            line_height=style.line_height(style.max_font_size),
        )

    for font_size in style.candidate_sizes():
        lines = wrap_text(text, box.width, measure, font_size)
        line_height = style.line_height(font_size)
        if len(lines) * line_height <= box.height:
            return FitResult(lines=lines, font_size=font_size, line_height=line_height)

    return truncate_to_box(text, measure, box, style)
