from __future__ import annotations

import base64
import binascii
import hashlib
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont

from reportfill.config import Settings
from reportfill.errors import AssetNotFoundError, PayloadError

logger = logging.getLogger(__name__)

BASE_REGULAR = 'Helvetica'
BASE_BOLD = 'Helvetica-Bold'

_WOFF_MAGICS = (b'wOFF', b'wOF2')


@dataclass(frozen=True)
class FontHandle:
    name: str
    source: str = 'base14'

    def width(self, text: str, size: float) -> float:
        if not text:
            return 0.0
        return float(pdfmetrics.stringWidth(text, self.name, size))


@dataclass(frozen=True)
class ReportFonts:
    regular: FontHandle
    bold: FontHandle

    def pick(self, key: str) -> FontHandle:
        return self.bold if str(key or '').strip().lower() == 'bold' else self.regular


def _safe_file(path: Path | None) -> Path | None:
    if path is None:
        return None
    if path.exists() and path.is_file():
        return path
    return None


def _first_existing_path(candidates: Iterable[Path]) -> Path | None:
    for candidate in candidates:
        resolved = _safe_file(candidate)
        if resolved is not None:
            return resolved
    return None


def _font_candidates(settings: Settings, filename: str) -> list[Path]:
    return [
        Path(settings.font_dir) / filename,
        Path('./fonts') / filename,
        Path(__file__).resolve().parents[2] / 'fonts' / filename,
    ]


def _woff_to_ttf(data: bytes) -> bytes:
    from fontTools.ttLib import TTFont as FontToolsTTFont

    font = FontToolsTTFont(io.BytesIO(data))
    if 'glyf' not in font:
        raise ValueError('unsupported outlines (CFF/PostScript) in WOFF font')
    font.flavor = None
    out = io.BytesIO()
    font.save(out)
    return out.getvalue()


def register_font_bytes(data: bytes, *, label: str = 'font') -> FontHandle:
    """Register TTF/OTF/WOFF bytes with reportlab under a content-derived name.

    The name depends only on the bytes, so concurrent requests embedding the same font
    share one registry entry and never clobber each other.
    """
    if not data:
        raise ValueError(f'{label} is empty')

    font_name = f'RF-{hashlib.sha256(data).hexdigest()[:16]}'
    if font_name in pdfmetrics.getRegisteredFontNames():
        return FontHandle(name=font_name, source='ttf')

    source = 'ttf'
    ttf_bytes = data
    if data[:4] in _WOFF_MAGICS:
        ttf_bytes = _woff_to_ttf(data)
        source = 'woff'

    pdfmetrics.registerFont(TTFont(font_name, io.BytesIO(ttf_bytes)))
    logger.debug('Registered %s as %s (%s bytes, %s)', label, font_name, len(data), source)
    return FontHandle(name=font_name, source=source)


def load_font_file(path: Path) -> FontHandle:
    resolved = _safe_file(path)
    if resolved is None:
        raise AssetNotFoundError(f'Font not found: {path}', searched=[str(path)])
    return register_font_bytes(resolved.read_bytes(), label=str(resolved))


def _decode_font_b64(value: str, *, label: str) -> bytes:
    try:
        return base64.b64decode(str(value).strip(), validate=False)
    except (binascii.Error, ValueError) as exc:
        raise PayloadError(f'{label} is not valid base64') from exc


def _configured_font(settings: Settings, filename: str, fallback: str) -> FontHandle:
    path = _first_existing_path(_font_candidates(settings, filename))
    if path is None:
        return FontHandle(name=fallback)
    try:
        return load_font_file(path)
    except Exception as exc:
        logger.warning('Failed to register font %s: %s; using %s', path, exc, fallback)
        return FontHandle(name=fallback)


def _payload_font(value: str, *, label: str, fallback: FontHandle) -> FontHandle:
    data = _decode_font_b64(value, label=label)
    try:
        return register_font_bytes(data, label=label)
    except Exception as exc:
        logger.warning('Failed to embed %s from payload: %s; using %s', label, exc, fallback.name)
        return fallback


def resolve_fonts(
    settings: Settings,
    *,
    font_b64: str | None = None,
    font_bold_b64: str | None = None,
) -> ReportFonts:
    regular = _configured_font(settings, settings.font_regular_file, BASE_REGULAR)
    bold = _configured_font(settings, settings.font_bold_file, BASE_BOLD)

    if font_b64:
        regular = _payload_font(font_b64, label='fontB64', fallback=regular)
    if font_bold_b64:
        bold = _payload_font(font_bold_b64, label='fontBoldB64', fallback=bold)
    return ReportFonts(regular=regular, bold=bold)
