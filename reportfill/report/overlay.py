from __future__ import annotations

import io

from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from reportfill.adapters.fonts import FontHandle
from reportfill.types import Color


class OverlayCanvas:
    """Multi-page reportlab canvas drawn in native PDF space (origin bottom-left, y up).

    One overlay page is produced per template page; the caller merges page ``i`` of the
    result onto template page ``i``.
    """

    def __init__(self) -> None:
        self._buffer = io.BytesIO()
        self._canvas = canvas.Canvas(self._buffer)
        self._canvas.setTitle('reportfill overlay')
        self.page_count = 0
        self.draw_count = 0

    def begin_page(self, width: float, height: float, *, origin: tuple[float, float] = (0.0, 0.0)) -> None:
        self._canvas.setPageSize((width, height))
        self._canvas.saveState()
        if origin != (0.0, 0.0):
            self._canvas.translate(origin[0], origin[1])

    def end_page(self) -> None:
        self._canvas.restoreState()
        self._canvas.showPage()
        self.page_count += 1

    def draw_text(self, text: str, x: float, y: float, size: float, font: FontHandle, color: Color) -> None:
        self._canvas.setFillColorRGB(*color)
        self._canvas.setFont(font.name, size)
        self._canvas.drawString(x, y, text)
        self.draw_count += 1

    def draw_rect(
        self,
        x: float,
        y: float,
        w: float,
        h: float,
        *,
        stroke: Color | None = None,
        fill: Color | None = None,
        width: float = 1.0,
        fill_opacity: float = 1.0,
    ) -> None:
        if stroke is None and fill is None:
            return
        c = self._canvas
        c.saveState()
        if stroke is not None:
            c.setStrokeColorRGB(*stroke)
            c.setLineWidth(width)
        if fill is not None:
            c.setFillColorRGB(*fill)
            c.setFillAlpha(max(0.0, min(1.0, fill_opacity)))
        c.rect(x, y, w, h, stroke=1 if stroke is not None else 0, fill=1 if fill is not None else 0)
        c.restoreState()
        self.draw_count += 1

    def draw_image(self, data: bytes, x: float, y: float, w: float, h: float) -> None:
        reader = ImageReader(io.BytesIO(data))
        self._canvas.drawImage(
            reader,
            x,
            y,
            width=w,
            height=h,
            preserveAspectRatio=True,
            anchor='c',
            mask='auto',
        )
        self.draw_count += 1

    def finish(self) -> bytes:
        self._canvas.save()
        return self._buffer.getvalue()
