from __future__ import annotations

import io
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Mapping

from pypdf import PdfReader, PdfWriter

from reportfill.adapters.chart import ChartConfig, ChartFetcher, ChartImage, resolve_chart_url
from reportfill.adapters.fonts import ReportFonts, resolve_fonts
from reportfill.adapters.templates import TemplateSource, find_template, load_template, select_combo
from reportfill.config import Settings, get_settings
from reportfill.errors import AssetNotFoundError, ChartFetchError
from reportfill.payload import build_debug_summary, canonicalize, field_texts, format_tldr
from reportfill.report.coords import to_native_rect
from reportfill.report.layout_defaults import DEFAULT_LAYOUT, merge_layout
from reportfill.report.overlay import OverlayCanvas
from reportfill.report.textbox import draw_text_box
from reportfill.types import CanonicalPayload, HighlightPlacement, ImagePlacement, ReportLayout

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    pdf_bytes: bytes
    filename: str
    combo: str
    template_name: str
    page_count: int
    fields_drawn: list[str] = field(default_factory=list)
    fields_missing: list[str] = field(default_factory=list)
    chart_source: str = 'none'
    chart_drawn: bool = False


@dataclass(frozen=True)
class PageGeometry:
    width: float
    height: float
    origin: tuple[float, float]


def chart_config(settings: Settings) -> ChartConfig:
    return ChartConfig(
        base_url=settings.chart_base_url,
        width=settings.chart_width,
        height=settings.chart_height,
        timeout_seconds=settings.chart_timeout_seconds,
        cache_bust_param=settings.chart_cache_bust_param,
    )


def _safe_filename_part(value: str) -> str:
    folded = unicodedata.normalize('NFKD', str(value or '')).encode('ascii', 'ignore').decode('ascii')
    return re.sub(r'[^A-Za-z0-9._-]+', '_', folded.strip()).strip('_.')


def report_filename(prefix: str, full_name: str, date_label: str) -> str:
    parts = [_safe_filename_part(prefix) or 'Report', _safe_filename_part(full_name) or 'Report']
    date_part = _safe_filename_part(date_label)
    if date_part:
        parts.append(date_part)
    return '_'.join(parts) + '.pdf'


def _page_geometry(page: Any) -> PageGeometry:
    box = page.mediabox
    return PageGeometry(
        width=float(box.width),
        height=float(box.height),
        origin=(float(box.left), float(box.bottom)),
    )


def _highlight_state(placement: HighlightPlacement, canonical: CanonicalPayload) -> str | None:
    if placement.target == 'second':
        return canonical.second_key
    return canonical.dom_key


def _draw_highlight(surface: OverlayCanvas, placement: HighlightPlacement, state: str, page_height: float) -> bool:
    cell = placement.cells.get(state)
    if cell is None or cell.w <= 0 or cell.h <= 0:
        return False
    x, y, w, h = to_native_rect(cell.x, cell.y, cell.w, cell.h, page_height)
    surface.draw_rect(
        x,
        y,
        w,
        h,
        stroke=placement.stroke,
        fill=placement.fill,
        width=placement.width,
        fill_opacity=placement.fill_opacity,
    )
    return True


def _draw_chart(surface: OverlayCanvas, placement: ImagePlacement, image: ChartImage, page_height: float) -> bool:
    x, y, w, h = to_native_rect(placement.x, placement.y, placement.w, placement.h, page_height)
    try:
        surface.draw_image(image.data, x, y, w, h)
    except Exception as exc:
        logger.warning('Chart image could not be embedded (%s): %s', image.kind, exc)
        return False
    return True


async def _fetch_chart(
    canonical: CanonicalPayload,
    layout: ReportLayout,
    settings: Settings,
    fetcher: ChartFetcher | None,
) -> tuple[ChartImage | None, str]:
    cfg = chart_config(settings)
    url, source = resolve_chart_url(
        cfg,
        chart_url=canonical.chart_url,
        bands=canonical.bands,
        counts=canonical.counts,
    )
    if url is None or layout.chart is None:
        return None, source

    fetcher = fetcher or ChartFetcher(cfg)
    try:
        return await fetcher.fetch(url), source
    except ChartFetchError as exc:
        logger.warning('Chart omitted (%s): %s', source, exc)
        return None, source


def paint_overlay(
    reader: PdfReader,
    canonical: CanonicalPayload,
    layout: ReportLayout,
    fonts: ReportFonts,
    chart: ChartImage | None,
) -> tuple[bytes, list[str], bool]:
    texts = field_texts(canonical)
    geometries = [_page_geometry(page) for page in reader.pages]
    page_count = len(geometries)

    by_page: dict[int, list[str]] = {}
    for key, placement in layout.text.items():
        if placement.page < 0 or placement.page >= page_count:
            if key in texts:
                logger.warning('Field %s targets page %s but template has %s pages', key, placement.page, page_count)
            continue
        by_page.setdefault(placement.page, []).append(key)

    surface = OverlayCanvas()
    drawn: list[str] = []
    chart_drawn = False

    for page_index, geometry in enumerate(geometries):
        surface.begin_page(geometry.width, geometry.height, origin=geometry.origin)

        for name, placement in layout.highlights.items():
            if placement.page != page_index:
                continue
            state = _highlight_state(placement, canonical)
            if state and _draw_highlight(surface, placement, state, geometry.height):
                logger.debug('Highlight %s drawn for state %s', name, state)

        if chart is not None and layout.chart is not None and layout.chart.page == page_index:
            chart_drawn = _draw_chart(surface, layout.chart, chart, geometry.height)

        for key in by_page.get(page_index, []):
            text = texts.get(key, '')
            if not text:
                continue
            placement = layout.text[key]
            if placement.style == 'tldr':
                text = format_tldr(text)
            count = draw_text_box(
                surface,
                fonts.pick(placement.font),
                text,
                placement.box,
                page_height=geometry.height,
                color=placement.color,
            )
            if count:
                drawn.append(key)

        surface.end_page()

    return surface.finish(), drawn, chart_drawn


def merge_overlay(reader: PdfReader, overlay_bytes: bytes) -> bytes:
    overlay = PdfReader(io.BytesIO(overlay_bytes))
    writer = PdfWriter()
    for index, page in enumerate(reader.pages):
        target = writer.add_page(page)
        if index < len(overlay.pages):
            target.merge_page(overlay.pages[index])

    output = io.BytesIO()
    writer.write(output)
    return output.getvalue()


def _open_template(template: TemplateSource) -> PdfReader:
    reader = PdfReader(io.BytesIO(template.data))
    if reader.is_encrypted:
        reader.decrypt('')
    return reader


async def render_report(
    payload: Mapping[str, Any],
    *,
    settings: Settings | None = None,
    layout: ReportLayout | None = None,
    chart_fetcher: ChartFetcher | None = None,
) -> RenderResult:
    settings = settings or get_settings()
    canonical = canonicalize(payload)
    combo = select_combo(canonical.dom_key, canonical.second_key, settings.default_combo)
    if combo != canonical.combo:
        logger.info('Combination %r unusable; using %s', canonical.combo, combo)
    resolved_layout = merge_layout(layout or DEFAULT_LAYOUT, canonical.layout_override)

    template = load_template(settings, combo, template_b64=canonical.template_b64)
    reader = _open_template(template)
    fonts = resolve_fonts(
        settings,
        font_b64=canonical.font_b64,
        font_bold_b64=canonical.font_bold_b64,
    )
    chart, chart_source = await _fetch_chart(canonical, resolved_layout, settings, chart_fetcher)

    overlay_bytes, drawn, chart_drawn = paint_overlay(reader, canonical, resolved_layout, fonts, chart)
    pdf_bytes = merge_overlay(reader, overlay_bytes)

    missing = [key for key in resolved_layout.text if key not in drawn]
    logger.info(
        'Rendered %s (combo=%s, pages=%s, fields=%s, chart=%s)',
        template.name,
        combo,
        len(reader.pages),
        len(drawn),
        chart_source if chart_drawn else 'none',
    )
    return RenderResult(
        pdf_bytes=pdf_bytes,
        filename=report_filename(settings.template_prefix, canonical.full_name, canonical.date_label),
        combo=combo,
        template_name=template.name,
        page_count=len(reader.pages),
        fields_drawn=drawn,
        fields_missing=missing,
        chart_source=chart_source,
        chart_drawn=chart_drawn,
    )


def inspect_payload(
    payload: Mapping[str, Any],
    *,
    settings: Settings | None = None,
    layout: ReportLayout | None = None,
) -> dict[str, Any]:
    """Diagnostic summary of what a render would use. Never renders a PDF."""
    settings = settings or get_settings()
    canonical = canonicalize(payload)
    combo = select_combo(canonical.dom_key, canonical.second_key, settings.default_combo)
    resolved_layout = merge_layout(layout or DEFAULT_LAYOUT, canonical.layout_override)

    if canonical.template_b64:
        template_name = 'payload'
    else:
        try:
            template_name = str(find_template(settings, combo))
        except AssetNotFoundError:
            template_name = 'missing'

    _, chart_source = resolve_chart_url(
        chart_config(settings),
        chart_url=canonical.chart_url,
        bands=canonical.bands,
        counts=canonical.counts,
    )
    return build_debug_summary(
        canonical,
        resolved_layout,
        combo=combo,
        template_name=template_name,
        chart_source=chart_source,
    )
