"""
reportfill HTTP service
=======================
Flask front end for the report template filler.

Endpoints:
  - GET  /                       service description
  - GET  /health                 template directory status
  - GET  /api/fill-template      ?data=<base64|base64url JSON>[&debug=1]
  - POST /api/fill-template      JSON body (payload or {"data": "<base64>"})[?debug=1]
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from reportfill.adapters.chart import ChartFetcher
from reportfill.adapters.templates import VALID_COMBOS, template_filename
from reportfill.config import Settings, get_settings
from reportfill.errors import AssetNotFoundError, PayloadError
from reportfill.payload import parse_request_payload
from reportfill.report.fill_template import inspect_payload, render_report

logger = logging.getLogger(__name__)

_TRUTHY = {'1', 'true', 'yes', 'on'}

app = Flask(__name__)
CORS(app)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=str(level or get_settings().log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def _settings() -> Settings:
    override = app.config.get('REPORTFILL_SETTINGS')
    if isinstance(override, Settings):
        return override
    return get_settings()


def _chart_fetcher() -> ChartFetcher | None:
    fetcher = app.config.get('REPORTFILL_CHART_FETCHER')
    return fetcher if isinstance(fetcher, ChartFetcher) else None


def _error(message: str, status: int, **extra: Any):
    return jsonify({'ok': False, 'error': message, **extra}), status


def _debug_requested(payload: dict[str, Any]) -> bool:
    if str(request.args.get('debug', '')).strip().lower() in _TRUTHY:
        return True
    flag = payload.get('debug')
    return flag is True or str(flag).strip().lower() in _TRUTHY


@app.route('/', methods=['GET'])
def index():
    return jsonify(
        {
            'service': _settings().app_name,
            'status': 'running',
            'description': 'Fills PDF report templates with narrative text, a radar chart and highlights',
            'endpoints': {
                'GET /api/fill-template?data=<base64 JSON>': 'Render the filled PDF',
                'POST /api/fill-template': 'Render the filled PDF from a JSON body',
                'GET /api/fill-template?debug=1': 'Diagnostic JSON instead of a PDF',
                'GET /health': 'Template storage status',
                'GET /': 'This page',
            },
        }
    )


@app.route('/health', methods=['GET'])
def health():
    settings = _settings()
    available: list[str] = []
    for combo in sorted(VALID_COMBOS):
        filename = template_filename(settings.template_prefix, combo)
        if any((directory / filename).is_file() for directory in settings.template_search_paths()):
            available.append(combo)

    healthy = settings.default_combo in available
    payload = {
        'status': 'healthy' if healthy else 'degraded',
        'default_combo': settings.default_combo,
        'templates_available': available,
        'template_search_paths': [str(path) for path in settings.template_search_paths()],
    }
    return jsonify(payload), (200 if healthy else 503)


@app.route('/api/fill-template', methods=['GET', 'POST'])
@app.route('/fill-template', methods=['GET', 'POST'])
def fill_template():
    settings = _settings()

    if request.content_length and request.content_length > settings.max_payload_bytes:
        return _error('Payload too large', 413)

    try:
        payload = parse_request_payload(request.args.get('data'), request.get_json(silent=True))
    except PayloadError as exc:
        return _error(str(exc), 400)

    try:
        if settings.allow_debug and _debug_requested(payload):
            return jsonify(inspect_payload(payload, settings=settings)), 200

        result = asyncio.run(
            render_report(payload, settings=settings, chart_fetcher=_chart_fetcher())
        )
    except PayloadError as exc:
        return _error(str(exc), 400)
    except AssetNotFoundError as exc:
        logger.error('%s (searched: %s)', exc, ', '.join(exc.searched))
        return _error(str(exc), 500)
    except Exception as exc:
        logger.exception('fill-template failed')
        if settings.expose_error_details:
            return _error('Internal server error', 500, message=f'{type(exc).__name__}: {exc}')
        return _error('Internal server error', 500)

    return Response(
        result.pdf_bytes,
        status=200,
        mimetype='application/pdf',
        headers={
            'Content-Disposition': f'attachment; filename="{result.filename}"',
            'Cache-Control': 'no-store',
            'X-Report-Combo': result.combo,
        },
    )


def run_server(host: str | None = None, port: int | None = None) -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    bind_host = host or settings.server_host
    bind_port = int(port or settings.server_port)
    logger.info('Starting %s on http://%s:%s', settings.app_name, bind_host, bind_port)
    app.run(host=bind_host, port=bind_port, debug=False, threaded=True)


if __name__ == '__main__':
    run_server()
