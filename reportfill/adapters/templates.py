from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from itertools import permutations
from pathlib import Path

from reportfill.config import Settings
from reportfill.errors import AssetNotFoundError, PayloadError
from reportfill.types import STATE_KEYS

logger = logging.getLogger(__name__)

VALID_COMBOS: frozenset[str] = frozenset(a + b for a, b in permutations(STATE_KEYS, 2))


@dataclass(frozen=True)
class TemplateSource:
    data: bytes
    name: str
    combo: str


def normalize_state_key(value: object) -> str | None:
    token = str(value or '').strip().upper()
    if len(token) == 1 and token in STATE_KEYS:
        return token
    return None


def select_combo(dom_key: str | None, second_key: str | None, default_combo: str) -> str:
    dom = normalize_state_key(dom_key)
    second = normalize_state_key(second_key)
    if dom and second:
        combo = dom + second
        if combo in VALID_COMBOS:
            return combo
    fallback = str(default_combo or '').strip().upper()
    if fallback not in VALID_COMBOS:
        raise ValueError(f'default combination {default_combo!r} is not one of {sorted(VALID_COMBOS)}')
    return fallback


def template_filename(prefix: str, combo: str) -> str:
    return f'{prefix}_{combo}.pdf'


def find_template(settings: Settings, combo: str) -> Path:
    filename = template_filename(settings.template_prefix, combo)
    searched: list[str] = []
    for directory in settings.template_search_paths():
        candidate = directory / filename
        searched.append(str(candidate))
        if candidate.exists() and candidate.is_file():
            return candidate
    raise AssetNotFoundError(f'Template not found: {filename}', searched=searched)


def load_template(settings: Settings, combo: str, *, template_b64: str | None = None) -> TemplateSource:
    if template_b64:
        try:
            data = base64.b64decode(str(template_b64).strip(), validate=False)
        except (binascii.Error, ValueError) as exc:
            raise PayloadError('pdfTplB64 is not valid base64') from exc
        if not data:
            raise PayloadError('pdfTplB64 decoded to an empty document')
        return TemplateSource(data=data, name='payload', combo=combo)

    path = find_template(settings, combo)
    logger.info('Using template %s', path)
    return TemplateSource(data=path.read_bytes(), name=path.name, combo=combo)
