from __future__ import annotations

from pathlib import Path

import pytest

import run_export

PAGE_TEMPLATE = """<!doctype html>
<html lang="{lang}">
<head>
<meta charset="utf-8">
<title>{title}</title>
{extra}</head>
<body><h1>{title}</h1></body>
</html>
"""

SITE_PAGES = {
    "index.html": "ru",
    "index-en.html": "en",
    "about.html": "ru",
    "about-en.html": "en",
}


def render_page(title: str, lang: str = "ru", extra: str = "") -> str:
    return PAGE_TEMPLATE.format(title=title, lang=lang, extra=extra)


@pytest.fixture
def write_page():
    def _write(root: Path, rel: str, lang: str = "ru", extra: str = "") -> Path:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render_page(rel, lang, extra), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def export_dir(tmp_path, write_page):
    root = tmp_path / "export"
    root.mkdir()
    for rel, lang in SITE_PAGES.items():
        write_page(root, rel, lang, extra='<meta property="og:image" content="img/cover.png">\n')
    (root / "img").mkdir()
    (root / "img" / "cover.png").write_bytes(b"\x89PNG\r\n")
    (root / "css").mkdir()
    (root / "css" / "site.css").write_text("body{margin:0}\n", encoding="utf-8")
    return root


@pytest.fixture
def archive_dir(tmp_path):
    path = tmp_path / "archives"
    path.mkdir()
    return path


@pytest.fixture
def make_config(export_dir):
    def _make(**overrides) -> run_export.RunConfig:
        params = {
            "export_dir": str(export_dir),
            "domain": "example.com",
            "https": "1",
            "force_host": "1",
            "primary_lang": "ru",
            "zip_name": "site.zip",
        }
        params.update(overrides)
        return run_export.resolve_options(params)

    return _make
