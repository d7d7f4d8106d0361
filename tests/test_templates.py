from __future__ import annotations

import base64

import pytest

from reportfill.adapters.templates import (
    VALID_COMBOS,
    find_template,
    load_template,
    normalize_state_key,
    select_combo,
    template_filename,
)
from reportfill.config import Settings
from reportfill.errors import AssetNotFoundError, PayloadError


def test_there_are_twelve_valid_combinations():
    assert len(VALID_COMBOS) == 12
    assert 'TL' in VALID_COMBOS
    assert 'TT' not in VALID_COMBOS


def test_select_combo_from_dom_and_second():
    assert select_combo('T', 'L', 'CT') == 'TL'
    assert select_combo('t', ' l ', 'CT') == 'TL'


@pytest.mark.parametrize(
    'dom, second',
    [(None, 'L'), ('T', None), ('T', 'T'), ('X', 'L'), ('', '')],
)
def test_select_combo_falls_back_to_default(dom, second):
    assert select_combo(dom, second, 'rc') == 'RC'


def test_select_combo_rejects_invalid_default():
    with pytest.raises(ValueError):
        select_combo(None, None, 'ZZ')


def test_normalize_state_key():
    assert normalize_state_key(' r ') == 'R'
    assert normalize_state_key('Q') is None
    assert normalize_state_key(None) is None


def test_find_template_in_configured_dir(settings, template_dir):
    path = find_template(settings, 'TL')
    assert path == template_dir / template_filename('PoC_Profile', 'TL')


def test_find_template_tries_extra_search_dirs(tmp_path, template_dir):
    empty = tmp_path / 'first'
    empty.mkdir()
    settings = Settings(_env_file=None, template_dir=empty, template_search_dirs=f' , {template_dir} ')
    assert find_template(settings, 'CR').parent == template_dir


def test_missing_template_lists_searched_paths(empty_settings):
    with pytest.raises(AssetNotFoundError) as excinfo:
        find_template(empty_settings, 'TL')
    assert 'PoC_Profile_TL.pdf' in str(excinfo.value)
    assert len(excinfo.value.searched) >= 2
    assert all(item.endswith('PoC_Profile_TL.pdf') for item in excinfo.value.searched)


def test_load_template_prefers_payload_bytes(empty_settings):
    source = load_template(empty_settings, 'TL', template_b64=base64.b64encode(b'%PDF-1.4 stub').decode())
    assert source.name == 'payload'
    assert source.data == b'%PDF-1.4 stub'


def test_load_template_rejects_empty_payload_template(empty_settings):
    with pytest.raises(PayloadError):
        load_template(empty_settings, 'TL', template_b64='====')


def test_load_template_reads_file(settings):
    source = load_template(settings, 'LC')
    assert source.name == 'PoC_Profile_LC.pdf'
    assert source.data.startswith(b'%PDF')
