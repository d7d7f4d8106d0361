"""Request payload decoding and canonicalisation.

Deployed clients send the same logical field under many names. ``canonicalize``
resolves each field through an ordered alias list (first non-empty value wins) and
produces one ``CanonicalPayload``; nothing downstream looks at raw payload keys.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Any, Iterable, Mapping

from reportfill.errors import PayloadError
from reportfill.types import BAND_KEYS, STATE_KEYS, CanonicalPayload, ReportLayout

logger = logging.getLogger(__name__)

FULL_NAME_ALIASES = (
    'fullName', 'FullName', 'full_name', 'name',
    'identity.fullName', 'identity.name', 'person.fullName',
)
DATE_LABEL_ALIASES = (
    'dateLbl', 'dateLabel', 'date_label', 'date',
    'identity.dateLabel', 'identity.dateLbl', 'identity.date',
)
DOM_KEY_ALIASES = (
    'domState', 'dominantState', 'dom_key', 'domKey', 'dom',
    'identity.domState', 'identity.dominantState', 'dominant.key',
)
SECOND_KEY_ALIASES = (
    'secondState', 'second_key', 'secondKey', 'second',
    'identity.secondState', 'second.key',
)
SECTION_SOURCES = ('P', 'p', 'text', 'sections')
BANDS_ALIASES = ('bands', 'bands12', 'spider.bands', 'scores.bands')
COUNTS_ALIASES = ('counts', 'stateCounts', 'state_counts', 'scores.counts')
CHART_URL_ALIASES = ('chartUrl', 'chart_url', 'spiderChartUrl', 'spiderUrl', 'chart.url')
LAYOUT_ALIASES = ('layout', 'L')
TEMPLATE_ALIASES = ('pdfTplB64', 'pdfTpl')

MAX_LIST_ITEMS = 2
PREVIEW_CHARS = 80

_SECTION_KEY_PATTERN = re.compile(r'^p\d+_[A-Za-z0-9_]+$')
_ALT_BULLET_PATTERN = re.compile(r'^\s*[-–—·]\s+')


# --------------------------------------------------------------------------- #
# Decoding
# --------------------------------------------------------------------------- #


def decode_data_param(raw: str) -> dict[str, Any]:
    """Decode a base64 or base64url JSON document from a query parameter."""
    token = str(raw or '').strip()
    if not token:
        raise PayloadError('Missing payload (data)')

    if token.startswith('{'):
        text = token
    else:
        # Query-string decoding turns '+' into ' '; undo that before base64.
        normalized = token.replace(' ', '+').replace('-', '+').replace('_', '/')
        normalized += '=' * (-len(normalized) % 4)
        try:
            text = base64.b64decode(normalized, validate=True).decode('utf-8')
        except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
            raise PayloadError('Payload is not valid base64/base64url') from exc

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PayloadError(f'Payload is not valid JSON: {exc.msg}') from exc
    if not isinstance(payload, dict):
        raise PayloadError('Payload must be a JSON object')
    return payload


def parse_request_payload(data_param: str | None, body: Any) -> dict[str, Any]:
    if data_param:
        return decode_data_param(data_param)
    if isinstance(body, dict) and body:
        inner = body.get('data')
        if isinstance(inner, str) and inner.strip():
            return decode_data_param(inner)
        if isinstance(inner, dict) and inner:
            return inner
        return body
    raise PayloadError('Missing payload: supply ?data=<base64 JSON> or a JSON body')


# --------------------------------------------------------------------------- #
# Alias coalescing
# --------------------------------------------------------------------------- #


def lookup(payload: Mapping[str, Any], dotted: str) -> Any:
    current: Any = payload
    for part in dotted.split('.'):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list, bool)):
        return ''
    return str(value).strip()


def first_text(payload: Mapping[str, Any], aliases: Iterable[str]) -> str:
    for alias in aliases:
        text = _as_text(lookup(payload, alias))
        if text:
            return text
    return ''


def _first_mapping(payload: Mapping[str, Any], aliases: Iterable[str]) -> Mapping[str, Any] | None:
    for alias in aliases:
        value = lookup(payload, alias)
        if isinstance(value, Mapping) and value:
            return value
    return None


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _collect_sections(payload: Mapping[str, Any]) -> dict[str, str]:
    sections: dict[str, str] = {}
    for source in SECTION_SOURCES:
        block = payload.get(source)
        if not isinstance(block, Mapping):
            continue
        for key, value in block.items():
            text = _as_text(value)
            if text and key not in sections:
                sections[str(key)] = text
    for key, value in payload.items():
        if not _SECTION_KEY_PATTERN.match(str(key)):
            continue
        text = _as_text(value)
        if text and key not in sections:
            sections[str(key)] = text
    return sections


def _collect_collab(payload: Mapping[str, Any]) -> dict[str, str]:
    collab: dict[str, str] = {}
    for state in STATE_KEYS:
        text = first_text(
            payload,
            (
                f'collab.{state}',
                f'collab{state}',
                f'collab_{state}',
                f'P.p8_collab_{state}',
                f'p.p8_collab_{state}',
            ),
        )
        if text:
            collab[state] = text
    return collab


def _collect_list(payload: Mapping[str, Any], list_key: str, singular: str, section_prefix: str) -> list[str]:
    raw = payload.get(list_key)
    items: list[str] = []
    if isinstance(raw, list):
        items = [_as_text(item) for item in raw]
    elif isinstance(raw, str):
        items = [line.strip() for line in raw.split('\n')]
    items = [item for item in items if item]

    if not items:
        for index in range(1, MAX_LIST_ITEMS + 1):
            text = first_text(
                payload,
                (
                    f'{singular}{index}',
                    f'{singular}_{index}',
                    f'P.{section_prefix}_{index}',
                    f'p.{section_prefix}_{index}',
                ),
            )
            if text:
                items.append(text)
    return items[:MAX_LIST_ITEMS]


def _collect_bands(payload: Mapping[str, Any]) -> dict[str, float]:
    source = _first_mapping(payload, BANDS_ALIASES)
    if source is None:
        return {}
    bands: dict[str, float] = {}
    for key in BAND_KEYS:
        number = _as_number(source.get(key))
        if number is not None:
            bands[key] = number
    return bands


def _collect_counts(payload: Mapping[str, Any]) -> dict[str, float]:
    counts: dict[str, float] = {}
    source = _first_mapping(payload, COUNTS_ALIASES)
    if source is not None:
        for key, value in source.items():
            state = str(key or '').strip().upper()
            number = _as_number(value)
            if state in STATE_KEYS and number is not None and state not in counts:
                counts[state] = number
        return counts

    for state in STATE_KEYS:
        number = _as_number(lookup(payload, f'count{state}'))
        if number is not None:
            counts[state] = number
    return counts


def _state_key(value: str) -> str | None:
    token = value.strip().upper()
    if len(token) == 1 and token in STATE_KEYS:
        return token
    return None


def rank_second_state(counts: Mapping[str, float], dom_key: str | None) -> str | None:
    """Second state derived from counts when the payload does not name one.

    Highest count among the non-dominant states wins. Ties go to whichever state
    appears first in ``counts``; zero or negative counts never qualify.
    """
    best_key: str | None = None
    best_value = 0.0
    for key, value in counts.items():
        state = _state_key(str(key))
        if state is None or state == dom_key:
            continue
        number = _as_number(value) or 0.0
        if number > best_value:
            best_key = state
            best_value = number
    return best_key


def canonicalize(payload: Mapping[str, Any]) -> CanonicalPayload:
    dom_key = _state_key(first_text(payload, DOM_KEY_ALIASES))
    second_key = _state_key(first_text(payload, SECOND_KEY_ALIASES))
    counts = _collect_counts(payload)
    if dom_key and not second_key:
        second_key = rank_second_state(counts, dom_key)
        if second_key:
            logger.debug('Second state ranked from counts: %s', second_key)

    layout_override = _first_mapping(payload, LAYOUT_ALIASES)

    return CanonicalPayload(
        full_name=first_text(payload, FULL_NAME_ALIASES),
        date_label=first_text(payload, DATE_LABEL_ALIASES),
        dom_key=dom_key,
        second_key=second_key,
        sections=_collect_sections(payload),
        collab=_collect_collab(payload),
        tips=_collect_list(payload, 'tips', 'tip', 'p9_tip'),
        actions=_collect_list(payload, 'actions', 'action', 'p9_action'),
        bands=_collect_bands(payload),
        counts=counts,
        chart_url=first_text(payload, CHART_URL_ALIASES) or None,
        layout_override=dict(layout_override or {}),
        template_b64=first_text(payload, TEMPLATE_ALIASES) or None,
        font_b64=first_text(payload, ('fontB64',)) or None,
        font_bold_b64=first_text(payload, ('fontBoldB64',)) or None,
        debug=bool(payload.get('debug') is True or str(payload.get('debug')).lower() in {'1', 'true', 'yes'}),
    )


# --------------------------------------------------------------------------- #
# Field text
# --------------------------------------------------------------------------- #


def format_tldr(raw: str) -> str:
    """Normalise TL;DR text to one ``•`` bullet per line."""
    lines = [_ALT_BULLET_PATTERN.sub('• ', line) for line in str(raw or '').split('\n')]
    text = '\n'.join(lines).strip()
    if not text:
        return ''
    if ' • ' in text:
        parts = [part.strip() for part in text.split(' • ')]
        return '\n'.join(part if part.startswith('•') else f'• {part}' for part in parts if part)
    if '\n' in text:
        return text
    if text.startswith('•'):
        return text
    return f'• {text}'


def field_texts(canonical: CanonicalPayload) -> dict[str, str]:
    """Text for every layout key, keyed the way ``ReportLayout.text`` is keyed."""
    texts: dict[str, str] = {
        'cover_name': canonical.full_name,
        'cover_date': canonical.date_label,
    }
    texts.update(canonical.sections)
    for state, text in canonical.collab.items():
        texts[f'p8_collab_{state}'] = text
    for index, text in enumerate(canonical.tips, start=1):
        texts[f'p9_tip_{index}'] = text
    for index, text in enumerate(canonical.actions, start=1):
        texts[f'p9_action_{index}'] = text
    return {key: value for key, value in texts.items() if value}


def _preview(text: str) -> str:
    flat = ' '.join(text.split())
    if len(flat) <= PREVIEW_CHARS:
        return flat
    return flat[: PREVIEW_CHARS - 1] + '…'


def build_debug_summary(
    canonical: CanonicalPayload,
    layout: ReportLayout,
    *,
    combo: str,
    template_name: str,
    chart_source: str,
) -> dict[str, Any]:
    texts = field_texts(canonical)
    fields: dict[str, dict[str, Any]] = {}
    for key in layout.text:
        text = texts.get(key, '')
        fields[key] = {
            'present': bool(text),
            'length': len(text),
            'preview': _preview(text) if text else '',
        }
    extra = sorted(key for key in texts if key not in layout.text)

    return {
        'ok': True,
        'debug': True,
        'combo': combo,
        'template': template_name,
        'identity': {
            'fullName': canonical.full_name,
            'dateLabel': canonical.date_label,
            'domKey': canonical.dom_key,
            'secondKey': canonical.second_key,
        },
        'fields': fields,
        'unplaced_fields': extra,
        'tips': len(canonical.tips),
        'actions': len(canonical.actions),
        'bands': len(canonical.bands),
        'counts': dict(canonical.counts),
        'chart_source': chart_source,
        'layout_override_keys': sorted(canonical.layout_override.keys()),
    }
