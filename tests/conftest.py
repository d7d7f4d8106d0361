from __future__ import annotations

import io
import struct
import zlib
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from reportfill.adapters.templates import VALID_COMBOS, template_filename
from reportfill.config import Settings

CHAR_RATIO = 0.5


@dataclass(frozen=True)
class FixedWidthFont:
    """Every glyph is half the font size wide."""

    name: str = 'Helvetica'

    def width(self, text: str, size: float) -> float:
        return len(text) * size * CHAR_RATIO


@dataclass
class RecordingSurface:
    calls: list[tuple] = field(default_factory=list)

    def draw_text(self, text, x, y, size, font, color) -> None:
        self.calls.append((text, x, y, size, font, color))


def fixed_measure(size: float):
    font = FixedWidthFont()
    return lambda text: font.width(text, size)


def make_template_pdf(pages: int = 9, *, label: str = 'template') -> bytes:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    for index in range(pages):
        c.setFont('Helvetica', 8)
        c.drawString(20, 20, f'{label} page {index + 1}')
        c.showPage()
    c.save()
    return buffer.getvalue()


def tiny_png() -> bytes:
    def chunk(kind: bytes, body: bytes) -> bytes:
        return struct.pack('>I', len(body)) + kind + body + struct.pack('>I', zlib.crc32(kind + body) & 0xFFFFFFFF)

    header = struct.pack('>IIBBBBB', 2, 2, 8, 2, 0, 0, 0)
    raw = b''.join(b'\x00' + b'\x20\x60\xb0' * 2 for _ in range(2))
    return b'\x89PNG\r\n\x1a\n' + chunk(b'IHDR', header) + chunk(b'IDAT', zlib.compress(raw)) + chunk(b'IEND', b'')


@pytest.fixture
def template_dir(tmp_path: Path) -> Path:
    directory = tmp_path / 'templates'
    directory.mkdir()
    for combo in VALID_COMBOS:
        (directory / template_filename('PoC_Profile', combo)).write_bytes(make_template_pdf(label=combo))
    return directory


@pytest.fixture
def settings(tmp_path: Path, template_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        template_dir=template_dir,
        font_dir=tmp_path / 'no-fonts',
        data_dir=tmp_path / 'data',
        chart_timeout_seconds=2.0,
    )


@pytest.fixture
def empty_settings(tmp_path: Path) -> Settings:
    empty = tmp_path / 'empty'
    empty.mkdir()
    return Settings(
        _env_file=None,
        template_dir=empty,
        font_dir=tmp_path / 'no-fonts',
        data_dir=tmp_path / 'data',
    )
