from __future__ import annotations

import base64
import json

import pytest

from reportfill.errors import PayloadError
from reportfill.payload import (
    build_debug_summary,
    canonicalize,
    decode_data_param,
    field_texts,
    format_tldr,
    parse_request_payload,
    rank_second_state,
)
from reportfill.report.layout_defaults import DEFAULT_LAYOUT


def _b64(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode('utf-8')).decode('ascii')


def _b64url(payload: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(payload).encode('utf-8')).decode('ascii').rstrip('=')


def test_decode_standard_base64():
    assert decode_data_param(_b64({'fullName': 'Jane'})) == {'fullName': 'Jane'}


def test_decode_base64url_without_padding():
    payload = {'fullName': 'Zoë ?>?>', 'notes': '~~~???'}
    assert decode_data_param(_b64url(payload)) == payload


def test_decode_restores_plus_turned_into_space():
    payload = {'text': '>>>>>>>>?'}
    encoded = _b64(payload)
    assert '+' in encoded or '/' in encoded
    assert decode_data_param(encoded.replace('+', ' ')) == payload


def test_decode_accepts_raw_json():
    assert decode_data_param('{"domState": "T"}') == {'domState': 'T'}


@pytest.mark.parametrize('raw', ['', '   ', '!!!not-base64!!!', base64.b64encode(b'[1, 2]').decode(), base64.b64encode(b'nope').decode()])
def test_decode_rejects_bad_input(raw):
    with pytest.raises(PayloadError):
        decode_data_param(raw)


def test_parse_request_payload_sources():
    body = {'fullName': 'Jane'}
    assert parse_request_payload(_b64(body), None) == body
    assert parse_request_payload(None, body) == body
    assert parse_request_payload(None, {'data': _b64(body)}) == body
    assert parse_request_payload(None, {'data': body}) == body


@pytest.mark.parametrize('body', [None, {}, [], 'text'])
def test_parse_request_payload_missing(body):
    with pytest.raises(PayloadError):
        parse_request_payload(None, body)


def test_identity_alias_order_first_non_empty_wins():
    canonical = canonicalize(
        {
            'fullName': '  ',
            'FullName': 'Second Choice',
            'name': 'Third Choice',
            'identity': {'dateLabel': '1 March 2024'},
            'dateLbl': '',
        }
    )
    assert canonical.full_name == 'Second Choice'
    assert canonical.date_label == '1 March 2024'


def test_state_keys_are_normalized():
    canonical = canonicalize({'dominantState': ' t ', 'secondState': 'l'})
    assert canonical.dom_key == 'T'
    assert canonical.second_key == 'L'
    assert canonical.combo == 'TL'


def test_invalid_state_key_is_dropped():
    canonical = canonicalize({'domState': 'X', 'secondState': 'LL'})
    assert canonical.dom_key is None
    assert canonical.second_key is None


def test_second_state_ranked_from_counts():
    canonical = canonicalize({'domState': 'C', 'counts': {'C': 5, 'T': 1, 'R': 3, 'L': 3}})
    assert canonical.second_key == 'R'


def test_second_state_not_derived_without_dom():
    canonical = canonicalize({'counts': {'C': 5, 'T': 1}})
    assert canonical.dom_key is None
    assert canonical.second_key is None


def test_rank_second_state_rules():
    assert rank_second_state({'C': 4, 'T': 4, 'R': 1}, 'R') == 'C'
    assert rank_second_state({'T': 4, 'C': 4}, 'R') == 'T'
    assert rank_second_state({'C': 9, 'T': 0, 'R': -1}, 'C') is None
    assert rank_second_state({}, 'C') is None


def test_counts_accept_flat_keys():
    canonical = canonicalize({'countC': 2, 'countT': '3', 'countR': 'x'})
    assert canonical.counts == {'C': 2.0, 'T': 3.0}


def test_bands_collected_in_known_keys_only():
    canonical = canonicalize({'spider': {'bands': {'C_low': 1, 'T_high': '2.5', 'bogus': 4}}})
    assert canonical.bands == {'C_low': 1.0, 'T_high': 2.5}


def test_sections_merge_sources_in_order():
    canonical = canonicalize(
        {
            'P': {'p3_exec_tldr': 'from P', 'p4_dom_desc': ''},
            'text': {'p3_exec_tldr': 'ignored', 'p4_dom_desc': 'from text'},
            'p5_freq_desc': 'top level',
        }
    )
    assert canonical.sections == {
        'p3_exec_tldr': 'from P',
        'p4_dom_desc': 'from text',
        'p5_freq_desc': 'top level',
    }


def test_collab_tips_and_actions():
    canonical = canonicalize(
        {
            'collab': {'C': 'Works well with C'},
            'collabT': 'Works well with T',
            'P': {'p8_collab_L': 'From sections'},
            'tips': ['first tip', '', 'second tip', 'third tip'],
            'action1': 'do this',
            'action_2': 'then that',
        }
    )
    assert canonical.collab == {'C': 'Works well with C', 'T': 'Works well with T', 'L': 'From sections'}
    assert canonical.tips == ['first tip', 'second tip']
    assert canonical.actions == ['do this', 'then that']


def test_tips_from_multiline_string():
    assert canonicalize({'tips': 'one\n\ntwo\nthree'}).tips == ['one', 'two']


def test_chart_layout_template_and_debug_fields():
    canonical = canonicalize(
        {
            'spiderChartUrl': 'https://charts.example/x.png',
            'L': {'cover_name': {'size': 30}},
            'pdfTpl': 'QUJD',
            'debug': 'true',
        }
    )
    assert canonical.chart_url == 'https://charts.example/x.png'
    assert canonical.layout_override == {'cover_name': {'size': 30}}
    assert canonical.template_b64 == 'QUJD'
    assert canonical.debug is True


@pytest.mark.parametrize(
    'raw, expected',
    [
        ('', ''),
        ('Just one point', '• Just one point'),
        ('• already bulleted', '• already bulleted'),
        ('- first\n- second', '• first\n• second'),
        ('– dash\n· dot', '• dash\n• dot'),
        ('• a • b • c', '• a\n• b\n• c'),
        ('line one\nline two', 'line one\nline two'),
    ],
)
def test_format_tldr(raw, expected):
    assert format_tldr(raw) == expected


def test_field_texts_keys():
    canonical = canonicalize(
        {
            'fullName': 'Jane Doe',
            'dateLbl': '2024-01-01',
            'P': {'p3_exec_tldr': 'summary'},
            'collab': {'R': 'r text'},
            'tips': ['tip'],
            'actions': ['act'],
        }
    )
    assert field_texts(canonical) == {
        'cover_name': 'Jane Doe',
        'cover_date': '2024-01-01',
        'p3_exec_tldr': 'summary',
        'p8_collab_R': 'r text',
        'p9_tip_1': 'tip',
        'p9_action_1': 'act',
    }


def test_debug_summary_reports_field_presence():
    canonical = canonicalize(
        {
            'fullName': 'Jane Doe',
            'domState': 'T',
            'secondState': 'L',
            'P': {'p3_exec_summary': 'x' * 200, 'p99_unknown': 'stray'},
        }
    )
    summary = build_debug_summary(canonical, DEFAULT_LAYOUT, combo='TL', template_name='PoC_Profile_TL.pdf', chart_source='none')

    assert summary['ok'] is True
    assert summary['combo'] == 'TL'
    assert summary['identity']['domKey'] == 'T'
    assert summary['fields']['cover_name'] == {'present': True, 'length': 8, 'preview': 'Jane Doe'}
    assert summary['fields']['cover_date']['present'] is False
    assert len(summary['fields']['p3_exec_summary']['preview']) == 80
    assert summary['unplaced_fields'] == ['p99_unknown']
