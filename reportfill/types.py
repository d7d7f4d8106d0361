from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator

STATE_KEYS: tuple[str, ...] = ('C', 'T', 'R', 'L')

BAND_KEYS: tuple[str, ...] = (
    'C_low', 'C_mid', 'C_high',
    'T_low', 'T_mid', 'T_high',
    'R_low', 'R_mid', 'R_high',
    'L_low', 'L_mid', 'L_high',
)

Color = tuple[float, float, float]


def round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def parse_color(value: Any) -> Color | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)) and len(value) >= 3:
        try:
            channels = [float(value[0]), float(value[1]), float(value[2])]
        except (TypeError, ValueError):
            return None
        if any(channel > 1.0 for channel in channels):
            channels = [channel / 255.0 for channel in channels]
        return (
            max(0.0, min(1.0, channels[0])),
            max(0.0, min(1.0, channels[1])),
            max(0.0, min(1.0, channels[2])),
        )
    token = str(value or '').strip()
    if not re.fullmatch(r'#?[0-9a-fA-F]{6}', token):
        return None
    if token.startswith('#'):
        token = token[1:]
    return (
        int(token[0:2], 16) / 255.0,
        int(token[2:4], 16) / 255.0,
        int(token[4:6], 16) / 255.0,
    )


class Align(str, Enum):
    left = 'left'
    center = 'center'
    right = 'right'


class VAlign(str, Enum):
    top = 'top'
    middle = 'middle'
    bottom = 'bottom'


class Rect(BaseModel):
    model_config = ConfigDict(extra='ignore')

    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0


class Box(BaseModel):
    """Text region in top-left page coordinates (y grows downward)."""

    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0
    size: float = 12.0
    align: Align = Align.left
    max_lines: int = Field(default=0, validation_alias=AliasChoices('max_lines', 'maxLines'))
    line_gap: float | None = Field(default=None, validation_alias=AliasChoices('line_gap', 'lineGap'))
    pad: float = 0.0
    valign: VAlign = VAlign.top

    @field_validator('align', 'valign', mode='before')
    @classmethod
    def _lower_enum(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == '':
            return 'left' if info.field_name == 'align' else 'top'
        if isinstance(value, Enum):
            return value.value
        return str(value).strip().lower()

    @field_validator('max_lines', mode='before')
    @classmethod
    def _none_is_unbounded(cls, value: Any) -> Any:
        return 0 if value is None else value

    def resolved_line_gap(self) -> float:
        if self.line_gap is not None:
            return float(self.line_gap)
        return float(max(2, round_half_up(self.size * 0.2)))

    @property
    def inner_width(self) -> float:
        return self.w - self.pad * 2

    @property
    def inner_height(self) -> float:
        return self.h - self.pad * 2


@dataclass(frozen=True)
class LineRecord:
    content: str
    offset: float = 0.0


@dataclass(frozen=True)
class PositionedRun:
    text: str
    x: float
    # Baseline distance from the top of the page.
    y: float
    size: float


class TextPlacement(BaseModel):
    model_config = ConfigDict(extra='ignore')

    page: int
    box: Box
    font: str = 'regular'
    color: Color = (0.0, 0.0, 0.0)
    style: str = 'plain'

    @field_validator('color', mode='before')
    @classmethod
    def _coerce_color(cls, value: Any) -> Any:
        return parse_color(value) or (0.0, 0.0, 0.0)


class ImagePlacement(BaseModel):
    model_config = ConfigDict(extra='ignore')

    page: int
    x: float
    y: float
    w: float
    h: float


class HighlightPlacement(BaseModel):
    model_config = ConfigDict(extra='ignore')

    page: int
    # Which state key picks the cell: 'dom' or 'second'.
    target: str = 'dom'
    cells: dict[str, Rect] = Field(default_factory=dict)
    stroke: Color | None = (0.12, 0.38, 0.72)
    fill: Color | None = None
    fill_opacity: float = 0.18
    width: float = 1.5

    @field_validator('stroke', 'fill', mode='before')
    @classmethod
    def _coerce_color(cls, value: Any) -> Any:
        return parse_color(value)


class ReportLayout(BaseModel):
    text: dict[str, TextPlacement] = Field(default_factory=dict)
    chart: ImagePlacement | None = None
    highlights: dict[str, HighlightPlacement] = Field(default_factory=dict)


class CanonicalPayload(BaseModel):
    full_name: str = ''
    date_label: str = ''
    dom_key: str | None = None
    second_key: str | None = None
    sections: dict[str, str] = Field(default_factory=dict)
    collab: dict[str, str] = Field(default_factory=dict)
    tips: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    bands: dict[str, float] = Field(default_factory=dict)
    counts: dict[str, float] = Field(default_factory=dict)
    chart_url: str | None = None
    layout_override: dict[str, Any] = Field(default_factory=dict)
    template_b64: str | None = None
    font_b64: str | None = None
    font_bold_b64: str | None = None
    debug: bool = False

    @property
    def combo(self) -> str:
        return f'{self.dom_key or ""}{self.second_key or ""}'
