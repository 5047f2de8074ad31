#!/usr/bin/env python3
"""
Interactive delivery for the seo-export skill.

Serves one endpoint, ``/export``, taking the same parameters as
run_export.py (query string or form). The finalized archive is streamed
back as a download; the archive file is removed when the response is closed,
whether or not the body was read.

Usage:
    python serve_export.py --export-dir ./public --port 8080
    curl -OJ "http://127.0.0.1:8080/export?domain=example.com&force_host=1"
"""

from __future__ import annotations

import argparse
from collections.abc import Iterator
from pathlib import Path

from flask import Flask, Response, request

from run_export import ConfigError, FinalizerError, finalize_export, resolve_options

EXPORT_PARAMS = ("export_dir", "domain", "https", "www_mode", "force_host", "primary_lang", "zip_name")
NO_STORE = "no-store, no-cache, must-revalidate, max-age=0"


def error_response(message: str, status: int) -> Response:
    return Response(f"Error: {message}", status=status, mimetype="text/plain")


def stream_file(path: Path, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
    with path.open("rb") as fh:
        while chunk := fh.read(chunk_size):
            yield chunk


def resolve_export_dir(root: str, requested: str) -> str:
    if not root:
        return requested
    if not requested:
        return root
    base = Path(root).resolve()
    target = (base / requested).resolve()
    if target != base and base not in target.parents:
        raise ConfigError(f"export dir outside of {base}")
    return str(target)


def create_app(export_dir: str | Path | None = None, archive_dir: str | Path | None = None, workers: int = 4) -> Flask:
    app = Flask(__name__)
    app.config["EXPORT_DIR"] = str(export_dir or "")
    app.config["ARCHIVE_DIR"] = str(archive_dir or "")
    app.config["WORKERS"] = workers

    @app.route("/export", methods=["GET", "POST"])
    def export() -> Response:
        params = {key: request.values[key] for key in EXPORT_PARAMS if key in request.values}
        try:
            params["export_dir"] = resolve_export_dir(app.config["EXPORT_DIR"], str(params.get("export_dir") or ""))
            config = resolve_options(params)
        except ConfigError as exc:
            return error_response(str(exc), 400)

        try:
            result = finalize_export(
                config,
                archive_dir=app.config["ARCHIVE_DIR"] or None,
                workers=app.config["WORKERS"],
            )
        except FinalizerError as exc:
            return error_response(str(exc), 500)

        archive_path = result.archive_path
        response = Response(stream_file(archive_path), mimetype="application/zip")
        response.headers.set("Content-Disposition", "attachment", filename=archive_path.name)
        response.headers["Content-Length"] = str(archive_path.stat().st_size)
        response.headers["Cache-Control"] = NO_STORE
        response.call_on_close(lambda: archive_path.unlink(missing_ok=True))
        return response

    return app


def main() -> int:
    parser = argparse.ArgumentParser(description="Serve export finalization as a download endpoint.")
    parser.add_argument("--export-dir", default="", help="Export root used when a request names none")
    parser.add_argument("--archive-dir", default="", help="Where temporary archives are written")
    parser.add_argument("--workers", type=int, default=4)
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8080)
    args = parser.parse_args()

    app = create_app(args.export_dir or None, args.archive_dir or None, args.workers)
    app.run(host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
