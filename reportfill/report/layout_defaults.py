from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import ValidationError

from reportfill.errors import PayloadError
from reportfill.types import (
    STATE_KEYS,
    Box,
    HighlightPlacement,
    ImagePlacement,
    Rect,
    ReportLayout,
    TextPlacement,
)

logger = logging.getLogger(__name__)

_BOX_FIELD_ALIASES = {
    'x': 'x',
    'y': 'y',
    'w': 'w',
    'h': 'h',
    'size': 'size',
    'align': 'align',
    'valign': 'valign',
    'pad': 'pad',
    'max_lines': 'max_lines',
    'maxLines': 'max_lines',
    'line_gap': 'line_gap',
    'lineGap': 'line_gap',
}
_PLACEMENT_KEYS = ('page', 'font', 'color', 'style')

INK = (0.1, 0.12, 0.16)
MUTED = (0.3, 0.33, 0.38)


def _text(page: int, x: float, y: float, w: float, h: float, size: float, **opts: Any) -> TextPlacement:
    box_opts = {key: value for key, value in opts.items() if key in _BOX_FIELD_ALIASES}
    placement_opts = {key: value for key, value in opts.items() if key in _PLACEMENT_KEYS}
    placement_opts.setdefault('color', INK)
    return TextPlacement(
        page=page,
        box=Box(x=x, y=y, w=w, h=h, size=size, **box_opts),
        **placement_opts,
    )


def _tldr_and_body(page: int, prefix: str, body_key: str) -> dict[str, TextPlacement]:
    return {
        f'{prefix}_tldr': _text(page, 60, 150, 475, 130, 12, max_lines=7, style='tldr'),
        body_key: _text(page, 60, 310, 475, 440, 11, max_lines=26, color=MUTED),
    }


def _grid_cells(x0: float, y0: float, w: float, h: float, gap_x: float, gap_y: float) -> dict[str, Rect]:
    cells: dict[str, Rect] = {}
    for index, state in enumerate(STATE_KEYS):
        row, col = divmod(index, 2)
        cells[state] = Rect(x=x0 + col * (w + gap_x), y=y0 + row * (h + gap_y), w=w, h=h)
    return cells


def _strip_cells(x0: float, y0: float, w: float, h: float, gap: float) -> dict[str, Rect]:
    return {
        state: Rect(x=x0 + index * (w + gap), y=y0, w=w, h=h)
        for index, state in enumerate(STATE_KEYS)
    }


def _build_default_layout() -> ReportLayout:
    text: dict[str, TextPlacement] = {
        'cover_name': _text(0, 60, 560, 475, 40, 26, align='center', max_lines=1, font='bold'),
        'cover_date': _text(0, 60, 606, 475, 24, 13, align='center', max_lines=1, color=MUTED),
        'p3_exec_tldr': _text(2, 60, 150, 475, 170, 12, max_lines=8, style='tldr'),
        'p3_exec_summary': _text(2, 60, 350, 475, 400, 11, max_lines=24, color=MUTED),
        'p4_state_tldr': _text(3, 60, 150, 475, 120, 12, max_lines=6, style='tldr'),
        'p4_dom_desc': _text(3, 60, 300, 475, 230, 11, max_lines=13, color=MUTED),
    }
    text.update(
        {
            'p5_freq_tldr': _text(4, 60, 150, 475, 110, 12, max_lines=5, style='tldr'),
            'p5_freq_desc': _text(4, 60, 600, 475, 180, 11, max_lines=10, color=MUTED),
        }
    )
    text.update(_tldr_and_body(5, 'p6_seq', 'p6_seq_desc'))
    text.update(_tldr_and_body(6, 'p7_theme', 'p7_theme_desc'))

    for state, cell in _grid_cells(60, 160, 230, 270, 15, 30).items():
        text[f'p8_collab_{state}'] = _text(
            7, cell.x, cell.y, cell.w, cell.h, 10.5, max_lines=20, pad=8,
        )

    for index, y in enumerate((170, 280), start=1):
        text[f'p9_tip_{index}'] = _text(8, 60, y, 475, 90, 11, max_lines=6)
    for index, y in enumerate((470, 580), start=1):
        text[f'p9_action_{index}'] = _text(8, 60, y, 475, 90, 11, max_lines=6)

    strip = _strip_cells(60, 560, 110, 110, 11.67)
    grid = _grid_cells(60, 160, 230, 270, 15, 30)
    highlights = {
        'p4_dom': HighlightPlacement(page=3, target='dom', cells=strip, width=2.0, fill=(0.82, 0.89, 0.97)),
        'p4_second': HighlightPlacement(page=3, target='second', cells=strip, stroke=(0.55, 0.6, 0.66), width=1.0),
        'p8_dom': HighlightPlacement(page=7, target='dom', cells=grid, width=1.5),
    }

    return ReportLayout(
        text=text,
        chart=ImagePlacement(page=4, x=147.6, y=280, w=300, h=300),
        highlights=highlights,
    )


DEFAULT_LAYOUT: ReportLayout = _build_default_layout()


def _merge_text_placement(base: TextPlacement | None, raw: Mapping[str, Any]) -> TextPlacement:
    merged: dict[str, Any] = base.model_dump() if base is not None else {'box': {}}
    box = dict(merged.get('box') or {})
    box_source = raw.get('box') if isinstance(raw.get('box'), Mapping) else raw
    for key, value in box_source.items():
        field = _BOX_FIELD_ALIASES.get(str(key))
        if field is not None:
            box[field] = value
    merged['box'] = box
    for key in _PLACEMENT_KEYS:
        if key in raw:
            merged[key] = raw[key]
    return TextPlacement.model_validate(merged)


def _merge_model(base: Any, model: Any, raw: Mapping[str, Any]) -> Any:
    merged: dict[str, Any] = base.model_dump() if base is not None else {}
    merged.update(raw)
    return model.model_validate(merged)


def merge_layout(base: ReportLayout, override: Mapping[str, Any] | None) -> ReportLayout:
    """Overlay a payload layout onto ``base``; keys the payload omits keep their defaults."""
    if not override:
        return base

    text = dict(base.text)
    chart = base.chart
    highlights = dict(base.highlights)

    try:
        for key, value in override.items():
            if key == 'chart':
                if not value:
                    chart = None
                elif isinstance(value, Mapping):
                    chart = _merge_model(chart, ImagePlacement, value)
                continue
            if key == 'highlights':
                if not isinstance(value, Mapping):
                    continue
                for name, raw in value.items():
                    if not raw:
                        highlights.pop(name, None)
                    elif isinstance(raw, Mapping):
                        highlights[name] = _merge_model(highlights.get(name), HighlightPlacement, raw)
                continue
            if not isinstance(value, Mapping):
                logger.debug('Ignoring non-object layout override for %s', key)
                continue
            if key not in text and 'page' not in value:
                logger.warning('Layout override %s has no default and no page; ignored', key)
                continue
            text[key] = _merge_text_placement(text.get(key), value)
    except ValidationError as exc:
        raise PayloadError(f'Invalid layout override: {exc.errors()[0].get("msg")}') from exc

    return ReportLayout(text=text, chart=chart, highlights=highlights)
