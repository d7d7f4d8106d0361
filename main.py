from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from reportfill.config import get_settings
from reportfill.errors import AssetNotFoundError, PayloadError
from reportfill.payload import decode_data_param
from reportfill.report.fill_template import inspect_payload, render_report
from reportfill.server import configure_logging, run_server
from reportfill.storage import output_root, read_json, write_bytes_atomic, write_json_atomic


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _load_payload(args: argparse.Namespace) -> dict:
    if args.data:
        return decode_data_param(args.data)
    payload_path = Path(args.payload).expanduser().resolve()
    if not payload_path.exists() or not payload_path.is_file():
        raise PayloadError(f'Payload file not found: {payload_path}')
    try:
        return read_json(payload_path)
    except ValueError as exc:
        raise PayloadError(f'Payload file is not a JSON object: {exc}') from exc


def cmd_render(args: argparse.Namespace) -> int:
    try:
        payload = _load_payload(args)
        result = asyncio.run(render_report(payload))
    except PayloadError as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2
    except AssetNotFoundError as exc:
        _print_json({'status': 'error', 'message': str(exc), 'searched': exc.searched})
        return 2

    out_path = Path(args.out).expanduser() if args.out else output_root() / result.filename
    write_bytes_atomic(out_path, result.pdf_bytes)

    summary = {
        'status': 'ok',
        'path': str(out_path),
        'combo': result.combo,
        'template': result.template_name,
        'pages': result.page_count,
        'fields_drawn': result.fields_drawn,
        'fields_missing': result.fields_missing,
        'chart_source': result.chart_source,
        'chart_drawn': result.chart_drawn,
    }
    if args.summary:
        write_json_atomic(out_path.with_suffix('.json'), summary)
    _print_json(summary)
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    try:
        payload = _load_payload(args)
        _print_json(inspect_payload(payload))
    except PayloadError as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return 2
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    run_server(host=args.host, port=args.port)
    return 0


def _add_payload_args(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--payload', help='Path to a JSON payload file')
    source.add_argument('--data', help='Base64/base64url encoded JSON payload')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='reportfill: fill PDF report templates')
    parser.add_argument('--log-level', required=False, help='Override LOG_LEVEL')
    sub = parser.add_subparsers(dest='command', required=True)

    render = sub.add_parser('render', help='Render a filled PDF to disk')
    _add_payload_args(render)
    render.add_argument('--out', required=False, help='Output PDF path (default: data_dir/reports/<name>.pdf)')
    render.add_argument('--summary', action='store_true', help='Also write a JSON summary next to the PDF')
    render.set_defaults(func=cmd_render)

    inspect = sub.add_parser('inspect', help='Print the diagnostic summary for a payload')
    _add_payload_args(inspect)
    inspect.set_defaults(func=cmd_inspect)

    serve = sub.add_parser('serve', help='Run the HTTP service')
    serve.add_argument('--host', required=False)
    serve.add_argument('--port', type=int, required=False)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != 'serve':
        configure_logging(args.log_level or get_settings().log_level)
    return int(args.func(args))


if __name__ == '__main__':
    sys.exit(main())
