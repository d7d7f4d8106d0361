"""Text-box layout: word wrap, bullet hanging indents, ellipsis truncation and
alignment inside a fixed page region.

Everything in here is pure computation over strings and numbers. Glyph widths come
from a caller-supplied ``measure(text) -> points`` function bound to one font and
size, so the engine never touches font internals.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Protocol

from reportfill.report.coords import to_native_baseline
from reportfill.types import Align, Box, Color, LineRecord, PositionedRun, VAlign, round_half_up

logger = logging.getLogger(__name__)

Measure = Callable[[str], float]

BULLET = '•'
BULLET_LEAD = f'{BULLET} '
ELLIPSIS = '…'


class TextSurface(Protocol):
    def draw_text(
        self,
        text: str,
        x: float,
        y: float,
        size: float,
        font: Any,
        color: Color,
    ) -> None: ...


class WidthSource(Protocol):
    def width(self, text: str, size: float) -> float: ...


def bullet_gap(size: float) -> float:
    return float(max(4, round_half_up(size * 0.35)))


def wrap_words(text: str, available_width: float, measure: Measure) -> list[str]:
    words = str(text or '').split()
    lines: list[str] = []
    line = ''

    for word in words:
        candidate = f'{line} {word}' if line else word
        if measure(candidate) <= available_width:
            line = candidate
            continue
        if line:
            lines.append(line)
        line = word

    if line:
        lines.append(line)
    return lines


def _wrap_bullet(
    paragraph: str,
    *,
    width: float,
    lead_width: float,
    indent: float,
    measure: Measure,
) -> list[LineRecord]:
    body = paragraph.lstrip()[len(BULLET):]
    words = body.split()

    out: list[LineRecord] = []
    line = ''
    first = True

    def commit(content: str) -> None:
        if first:
            out.append(LineRecord(BULLET_LEAD + content, 0.0))
        else:
            out.append(LineRecord(content, indent))

    for word in words:
        candidate = f'{line} {word}' if line else word
        available = width - lead_width if first else width - indent
        if measure(candidate) <= available:
            line = candidate
            continue
        if line:
            commit(line)
            first = False
        line = word

    if line:
        commit(line)
    return out


def is_bullet_paragraph(paragraph: str) -> bool:
    return paragraph.lstrip().startswith(BULLET)


def wrap_rich_text(text: str, width: float, size: float, measure: Measure) -> list[LineRecord]:
    """Wrap multi-paragraph text, giving bullet paragraphs a hanging indent.

    Continuation lines of a ``•`` paragraph are shifted by the width of the bullet lead
    plus a small gap so they line up just past the glyph. Blank paragraphs become blank
    records; trailing blanks are dropped.
    """
    raw = str(text or '').replace('\r', '')
    lead_width = measure(BULLET_LEAD)
    indent = lead_width + bullet_gap(size)

    out: list[LineRecord] = []
    for paragraph in raw.split('\n'):
        if not paragraph.strip():
            out.append(LineRecord('', 0.0))
            continue
        if is_bullet_paragraph(paragraph):
            out.extend(
                _wrap_bullet(
                    paragraph,
                    width=width,
                    lead_width=lead_width,
                    indent=indent,
                    measure=measure,
                )
            )
            continue
        out.extend(LineRecord(line, 0.0) for line in wrap_words(paragraph, width, measure))

    while out and out[-1].content == '':
        out.pop()
    return out


def truncate_lines(
    lines: list[LineRecord],
    max_lines: int,
    available_width: float,
    measure: Measure,
) -> list[LineRecord]:
    if not max_lines or max_lines <= 0 or len(lines) <= max_lines:
        return list(lines)

    kept = list(lines[:max_lines])
    last = kept[-1]
    budget = available_width - last.offset
    if measure(ELLIPSIS) > budget:
        # Not even the ellipsis fits; the last kept line is dropped instead.
        return kept[:-1]
    trimmed = last.content
    while trimmed and measure(trimmed + ELLIPSIS) > budget:
        trimmed = trimmed[:-1]
    kept[-1] = LineRecord(trimmed.rstrip() + ELLIPSIS, last.offset)
    return kept


def max_fitting_lines(box: Box) -> int:
    line_height = box.size + box.resolved_line_gap()
    if line_height <= 0:
        return 0
    return max(0, math.floor(box.inner_height / line_height))


def layout_text_box(text: str, box: Box, measure: Measure) -> list[PositionedRun]:
    """Lay ``text`` into ``box`` and return positioned runs in top-left page coordinates."""
    source = str(text or '')
    if not source.strip():
        return []

    inner_w = box.inner_width
    lines = wrap_rich_text(source, inner_w, box.size, measure)
    lines = truncate_lines(lines, box.max_lines, inner_w, measure)

    line_gap = box.resolved_line_gap()
    line_height = box.size + line_gap
    fit = max_fitting_lines(box)
    if len(lines) > fit:
        logger.debug('Box clipped %s of %s lines', len(lines) - fit, len(lines))
    draw_lines = lines[:fit]
    if not draw_lines:
        return []

    block_h = len(draw_lines) * line_height - line_gap
    free = box.inner_height - block_h
    top = box.y + box.pad
    if box.valign == VAlign.middle:
        top += free / 2
    elif box.valign == VAlign.bottom:
        top += free

    runs: list[PositionedRun] = []
    baseline = top + box.size
    for record in draw_lines:
        x = box.x + box.pad + record.offset
        if box.align != Align.left:
            line_w = measure(record.content)
            if box.align == Align.center:
                x += (inner_w - line_w) / 2
            else:
                x += inner_w - line_w
        runs.append(PositionedRun(text=record.content, x=x, y=baseline, size=box.size))
        baseline += line_height
    return runs


def draw_text_box(
    surface: TextSurface,
    font: WidthSource,
    text: str,
    box: Box,
    *,
    page_height: float,
    color: Color = (0.0, 0.0, 0.0),
) -> int:
    size = box.size
    runs = layout_text_box(text, box, lambda value: font.width(value, size))
    for run in runs:
        if not run.text:
            continue
        surface.draw_text(
            run.text,
            run.x,
            to_native_baseline(page_height, run.y),
            run.size,
            font,
            color,
        )
    return len(runs)
