from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from reportfill.errors import ChartFetchError
from reportfill.types import BAND_KEYS, STATE_KEYS

logger = logging.getLogger(__name__)

PNG_MAGIC = b'\x89PNG\r\n\x1a\n'
JPEG_MAGIC = b'\xff\xd8\xff'

STATE_SCALE_MAX = 5.0


@dataclass
class ChartConfig:
    base_url: str
    width: int
    height: int
    timeout_seconds: float
    cache_bust_param: str


@dataclass(frozen=True)
class ChartImage:
    data: bytes
    kind: str
    url: str


def _encode_uri_component(value: str) -> str:
    return quote(value, safe="-_.!~*'()")


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _radar_config(labels: list[str], values: list[float], *, suggested_max: float, step: float | None = None) -> dict:
    ticks: dict[str, Any] = {'display': False}
    if step is not None:
        ticks['stepSize'] = step
    return {
        'type': 'radar',
        'data': {
            'labels': labels,
            'datasets': [
                {
                    'label': '',
                    'data': values,
                    'fill': True,
                    'borderWidth': 2,
                    'pointRadius': 2,
                }
            ],
        },
        'options': {
            'plugins': {'legend': {'display': False}},
            'scales': {
                'r': {
                    'beginAtZero': True,
                    'min': 0,
                    'suggestedMax': suggested_max,
                    'ticks': ticks,
                    'grid': {'circular': True},
                }
            },
        },
    }


def _chart_url(cfg: ChartConfig, chart: dict) -> str:
    encoded = _encode_uri_component(json.dumps(chart, separators=(',', ':')))
    return (
        f'{cfg.base_url}?c={encoded}'
        f'&backgroundColor=transparent&format=png&width={int(cfg.width)}&height={int(cfg.height)}'
    )


def band_chart_url(cfg: ChartConfig, bands: Mapping[str, Any]) -> str:
    """12-axis radar, each band scaled against the largest observed band (floor 1)."""
    values = [_number(bands.get(key)) for key in BAND_KEYS]
    max_value = max([*values, 1.0])
    scaled = [round(value / max_value, 4) if max_value > 0 else 0.0 for value in values]
    return _chart_url(cfg, _radar_config(list(BAND_KEYS), scaled, suggested_max=1))


def state_chart_url(cfg: ChartConfig, counts: Mapping[str, Any]) -> str:
    """4-axis radar on a fixed 0-5 scale."""
    values = [max(0.0, min(STATE_SCALE_MAX, _number(counts.get(key)))) for key in STATE_KEYS]
    return _chart_url(
        cfg,
        _radar_config(list(STATE_KEYS), values, suggested_max=STATE_SCALE_MAX, step=1),
    )


def with_cache_bust(url: str, param: str, token: str | None = None) -> str:
    value = token if token is not None else str(int(time.time() * 1000))
    base, sep, fragment = url.partition('#')
    joiner = '&' if '?' in base else '?'
    busted = f'{base}{joiner}{param}={_encode_uri_component(value)}'
    return f'{busted}{sep}{fragment}'


def sniff_image_type(data: bytes) -> str | None:
    if data.startswith(PNG_MAGIC):
        return 'png'
    if data.startswith(JPEG_MAGIC):
        return 'jpeg'
    return None


def resolve_chart_url(
    cfg: ChartConfig,
    *,
    chart_url: str | None,
    bands: Mapping[str, Any] | None,
    counts: Mapping[str, Any] | None,
    cache_token: str | None = None,
) -> tuple[str | None, str]:
    """Pick the chart URL for a request and report where it came from."""
    supplied = str(chart_url or '').strip()
    if supplied:
        return with_cache_bust(supplied, cfg.cache_bust_param, cache_token), 'supplied'
    if bands and any(_number(bands.get(key)) for key in BAND_KEYS):
        return band_chart_url(cfg, bands), 'bands'
    if counts and any(_number(counts.get(key)) for key in STATE_KEYS):
        return state_chart_url(cfg, counts), 'counts'
    return None, 'none'


class ChartFetcher:
    def __init__(self, cfg: ChartConfig, *, transport: httpx.AsyncBaseTransport | None = None):
        self.cfg = cfg
        self.transport = transport

    async def fetch(self, url: str) -> ChartImage:
        timeout = max(1.0, float(self.cfg.timeout_seconds))
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                transport=self.transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ChartFetchError(f'chart request failed: {type(exc).__name__}: {exc}') from exc

        data = response.content
        kind = sniff_image_type(data)
        if kind is None:
            raise ChartFetchError(
                f'chart response is not PNG/JPEG ({len(data)} bytes, '
                f'content-type={response.headers.get("content-type")!r})'
            )
        logger.debug('Fetched chart %s (%s, %s bytes)', url[:120], kind, len(data))
        return ChartImage(data=data, kind=kind, url=url)
