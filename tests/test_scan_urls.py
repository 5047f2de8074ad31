from __future__ import annotations

import random

import pytest

import run_export
from run_export import PLACEHOLDER, ScanError, UrlBuilder, classify_page, scan_pages


@pytest.mark.parametrize(
    ("rel", "expected"),
    [
        ("index.html", ("index", "ru", True)),
        ("index-en.html", ("index", "en", True)),
        ("index-zh-Hans.html", ("index", "zh-Hans", True)),
        ("about.html", ("about", "ru", False)),
        ("about-en.html", ("about", "en", False)),
        ("my-page.html", ("my", "page", False)),
        ("post-2024.html", ("post-2024", "ru", False)),
        ("docs/index.html", ("docs/index", "ru", False)),
        ("docs/index-en.html", ("docs/index", "en", False)),
        ("docs/guide-de.html", ("docs/guide", "de", False)),
    ],
)
def test_classify_page(rel, expected):
    assert classify_page(rel, "ru") == expected


def test_scan_builds_page_map(export_dir):
    scan = scan_pages(export_dir, "ru")
    assert list(scan.pages) == ["index", "about"]
    assert list(scan.pages["about"]) == ["ru", "en"]
    assert scan.langs == ["ru", "en"]
    assert scan.file_count == 4
    assert scan.pages["index"]["en"].is_home
    assert not scan.pages["about"]["en"].is_home
    assert scan.pages["about"]["en"].relative_path == "about-en.html"


def test_scan_ignores_non_html_and_uses_forward_slashes(export_dir, write_page):
    write_page(export_dir, "blog/post-en.html", "en")
    (export_dir / "blog" / "notes.txt").write_text("x", encoding="utf-8")
    scan = scan_pages(export_dir, "ru")
    assert scan.pages["blog/post"]["en"].relative_path == "blog/post-en.html"
    assert all("\\" not in variant.relative_path for variant in scan.variants())
    assert scan.file_count == 5


def test_primary_lang_always_listed_first(tmp_path, write_page):
    root = tmp_path / "site"
    write_page(root, "about-fr.html", "fr")
    write_page(root, "about-de.html", "de")
    scan = scan_pages(root, "en")
    assert scan.langs == ["en", "de", "fr"]
    assert list(scan.pages["about"]) == ["de", "fr"]


def test_no_pages_is_scan_error(tmp_path):
    (tmp_path / "style.css").write_text("", encoding="utf-8")
    with pytest.raises(ScanError, match="no pages found"):
        scan_pages(tmp_path, "ru")


def test_scan_is_independent_of_traversal_order(export_dir, write_page, monkeypatch):
    write_page(export_dir, "about-ru.html", "ru")
    write_page(export_dir, "docs/faq-en.html", "en")
    expected = scan_pages(export_dir, "ru")

    original = type(export_dir).rglob

    def shuffled(self, pattern):
        items = list(original(self, pattern))
        random.Random(7).shuffle(items)
        return iter(reversed(items))

    monkeypatch.setattr(type(export_dir), "rglob", shuffled)
    assert scan_pages(export_dir, "ru") == expected


def test_conflicting_files_prefer_canonical_name(export_dir, write_page):
    write_page(export_dir, "about-ru.html", "ru")
    scan = scan_pages(export_dir, "ru")
    assert scan.pages["about"]["ru"].relative_path == "about.html"
    assert scan.shadowed == ["about-ru.html"]
    assert scan.mismatched == []


def test_round_trip_paths(export_dir, write_page, make_config):
    write_page(export_dir, "index-zh-Hans.html", "zh-Hans")
    write_page(export_dir, "contact.html")
    write_page(export_dir, "Press.HTML")
    write_page(export_dir, "faq-en.Html", "en")
    write_page(export_dir, "docs/guide-de.html", "de")
    write_page(export_dir, "docs/index.html")
    config = make_config()
    urls = UrlBuilder(config)
    scan = scan_pages(config.export_dir, config.primary_lang)
    for variant in scan.variants():
        assert urls.file_for(variant.slug, variant.lang, variant.is_home, variant.suffix) == variant.relative_path
        path = urls.path_for(variant.slug, variant.lang, variant.is_home, variant.suffix)
        assert path == ("/" if variant.relative_path == "index.html" else "/" + variant.relative_path)


def test_path_for(make_config):
    urls = UrlBuilder(make_config())
    assert urls.path_for("index", "ru", True) == "/"
    assert urls.path_for("index", "en", True) == "/index-en.html"
    assert urls.path_for("about", "ru", False) == "/about.html"
    assert urls.path_for("about", "en", False) == "/about-en.html"


def test_absolute_urls(make_config):
    urls = UrlBuilder(make_config())
    assert urls.absolute("/about.html") == "https://example.com/about.html"
    assert urls.absolute("sitemap.xml") == "https://example.com/sitemap.xml"
    assert urls.absolute("/") == "https://example.com/"


def test_absolute_urls_with_placeholder(make_config):
    urls = UrlBuilder(make_config(domain=""))
    assert urls.absolute("/about-en.html") == f"{PLACEHOLDER}/about-en.html"


def test_alternate_links_fall_back_to_current_variant(make_config):
    urls = UrlBuilder(make_config())
    only_en = run_export.PageVariant(slug="news", lang="en", relative_path="news-en.html", is_home=False)
    links = run_export.alternate_links({"en": only_en}, only_en, urls)
    assert links == [
        ("en", "https://example.com/news-en.html"),
        ("x-default", "https://example.com/news-en.html"),
    ]


def test_alternate_links_add_missing_self(make_config):
    urls = UrlBuilder(make_config())
    ru = run_export.PageVariant(slug="news", lang="ru", relative_path="news.html", is_home=False)
    de = run_export.PageVariant(slug="news", lang="de", relative_path="news-de.html", is_home=False)
    codes = [code for code, _ in run_export.alternate_links({"ru": ru}, de, urls)]
    assert codes == ["ru", "de", "x-default"]


def test_uppercase_suffix_keeps_its_url(export_dir, write_page, make_config):
    write_page(export_dir, "Contact.HTML")
    urls = UrlBuilder(make_config())
    scan = scan_pages(export_dir, "ru")
    contact = scan.pages["Contact"]["ru"]
    assert contact.suffix == ".HTML"
    assert urls.url_for(contact) == "https://example.com/Contact.HTML"
    assert scan.mismatched == []


def test_primary_lang_suffix_alone_is_reported(export_dir, write_page, make_config):
    write_page(export_dir, "news-ru.html", "ru")
    scan = scan_pages(export_dir, "ru")
    assert scan.pages["news"]["ru"].relative_path == "news-ru.html"
    assert scan.mismatched == ["news-ru.html"]
    assert UrlBuilder(make_config()).url_for(scan.pages["news"]["ru"]) == "https://example.com/news.html"
