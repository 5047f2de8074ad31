#!/usr/bin/env python3
"""
Export finalizer for the seo-export skill.

Takes a static multi-language HTML export and prepares it for deployment
under a chosen domain: rewrites canonical/hreflang/og:url/twitter:url tags in
every page head, writes sitemap.xml, robots.txt, .htaccess, nginx.conf and
diagnostics.txt into the export root, then packs the whole tree into one ZIP.

Usage:
    python run_export.py --export-dir ./public --domain example.com --force-host
    python run_export.py --export-dir ./public --primary-lang en --www-mode www
    python run_export.py --export-dir ./public   # URLs keep {{BASE_URL}} for later
"""

from __future__ import annotations

import argparse
import concurrent.futures
import json
import os
import re
import tempfile
import xml.etree.ElementTree as ET
import zipfile
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from html import escape
from pathlib import Path, PurePosixPath
from typing import Any, Mapping
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

PLACEHOLDER = "{{BASE_URL}}"
SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
XHTML_NS = "http://www.w3.org/1999/xhtml"
DEFAULT_PRIMARY_LANG = "ru"
WWW_MODES = ("keep", "www", "non-www")
TRUE_VALUES = {"1", "true", "on", "yes"}
HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"
ROBOTS_DISALLOW = ("/editor/", "/data/")
FALLBACK_HOST = "example.com"

BLOCK_OPEN = "<!-- SEO (export-generated) -->"
BLOCK_CLOSE = "<!-- /SEO -->"

HOME_LANG_RE = re.compile(r"^index-([A-Za-z\-]+)$")
SLUG_LANG_RE = re.compile(r"^(.+)-([A-Za-z\-]+)$")
SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")
ABSOLUTE_URL_RE = re.compile(r"^(?:[A-Za-z][A-Za-z0-9+.\-]*:|//)")

GENERATED_BLOCK_RE = re.compile(r"\n?<!-- SEO \(export-generated\) -->.*?<!-- /SEO -->\n?", re.S)
LINK_TAG_RE = re.compile(r"<link\b[^>]*>\s*", re.I)
META_TAG_RE = re.compile(r"<meta\b[^>]*>\s*", re.I)
META_ONLY_RE = re.compile(r"<meta\b[^>]*>", re.I)
HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.I)
ATTR_RE = re.compile(r"""([A-Za-z_:][-A-Za-z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+))""")
CONTENT_ATTR_RE = re.compile(r"""(\bcontent\s*=\s*)(["'])(.*?)\2""", re.I | re.S)

URL_META_KEYS = {"og:url", "twitter:url"}
IMAGE_META_KEYS = {"og:image", "twitter:image"}

EXIT_PACKAGING = 1
EXIT_CONFIG = 2
EXIT_MISSING_INPUT = 3


class FinalizerError(Exception):
    """Fatal error: the run stops, files already written stay in place."""


class ConfigError(FinalizerError, ValueError):
    pass


class ScanError(FinalizerError):
    pass


class PackagingError(FinalizerError):
    pass


@dataclass(frozen=True)
class RunConfig:
    export_dir: Path
    domain: str
    host: str
    use_https: bool
    www_mode: str
    force_host: bool
    primary_lang: str
    zip_name: str

    @property
    def placeholder(self) -> bool:
        return self.domain == PLACEHOLDER


@dataclass(frozen=True)
class PageVariant:
    slug: str
    lang: str
    relative_path: str
    is_home: bool
    suffix: str = ".html"


@dataclass(frozen=True)
class ScanResult:
    pages: dict[str, dict[str, PageVariant]]
    langs: list[str]
    shadowed: list[str] = field(default_factory=list)
    mismatched: list[str] = field(default_factory=list)

    def variants(self) -> list[PageVariant]:
        return [variant for page in self.pages.values() for variant in page.values()]

    @property
    def file_count(self) -> int:
        return sum(len(page) for page in self.pages.values())


@dataclass(frozen=True)
class HeadTag:
    name: str
    attrs: tuple[tuple[str, str], ...]

    def render(self) -> str:
        rendered = " ".join(f'{key}="{escape(value, quote=True)}"' for key, value in self.attrs)
        return f"<{self.name} {rendered}>"


@dataclass(frozen=True)
class RedirectPlan:
    force_https: bool
    force_host: bool
    host: str

    @property
    def scheme(self) -> str:
        return "https" if self.force_https else "http"


@dataclass
class RunResult:
    config: RunConfig
    scan: ScanResult
    generated_at: datetime
    statuses: dict[str, str]
    verification: dict[str, list[str]]
    generated_files: list[str]
    archive_path: Path

    def skipped(self) -> list[str]:
        return [path for path, status in self.statuses.items() if status == "skipped"]

    def to_summary(self) -> dict[str, Any]:
        config = self.config
        return {
            "generated_at": iso_utc(self.generated_at),
            "export_dir": str(config.export_dir),
            "domain": config.domain,
            "host": config.host,
            "https": config.use_https,
            "www_mode": config.www_mode,
            "force_host": config.force_host,
            "primary_lang": config.primary_lang,
            "languages": self.scan.langs,
            "pages": {slug: list(page) for slug, page in self.scan.pages.items()},
            "html_files": self.scan.file_count,
            "rewritten": len([s for s in self.statuses.values() if s == "rewritten"]),
            "unchanged": len([s for s in self.statuses.values() if s == "unchanged"]),
            "skipped": self.skipped(),
            "shadowed": self.scan.shadowed,
            "mismatched": self.scan.mismatched,
            "verification_issues": self.verification,
            "generated_files": self.generated_files,
            "archive": str(self.archive_path),
        }


def iso_utc(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------- options


def parse_flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    return text in TRUE_VALUES


def to_ascii_host(host: str) -> str:
    if host.isascii():
        return host
    try:
        return host.encode("idna").decode("ascii")
    except UnicodeError:
        return host


def normalize_domain(raw: str, use_https: bool, www_mode: str) -> tuple[str, str]:
    value = raw.strip()
    if not value:
        return PLACEHOLDER, ""
    if not SCHEME_RE.match(value):
        value = ("https://" if use_https else "http://") + value
    try:
        host = (urlparse(value).hostname or "").strip().rstrip(".")
    except ValueError as exc:
        raise ConfigError(f"invalid domain: {raw}") from exc
    if not host or re.search(r"[\s/\\@]", host):
        raise ConfigError(f"invalid domain: {raw}")

    host = to_ascii_host(host.lower())
    if www_mode == "www" and not host.startswith("www."):
        host = f"www.{host}"
    elif www_mode == "non-www" and host.startswith("www."):
        host = host[4:]
    if not host:
        raise ConfigError(f"invalid domain: {raw}")

    scheme = "https" if use_https else "http"
    return f"{scheme}://{host}", host


def archive_name(raw: Any, now: datetime | None = None) -> str:
    name = PurePosixPath(str(raw or "").strip().replace("\\", "/")).name
    if name in {"", ".", ".."}:
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        return f"site-{stamp}.zip"
    return name


def resolve_options(params: Mapping[str, Any], now: datetime | None = None) -> RunConfig:
    export_raw = str(params.get("export_dir") or "").strip()
    if not export_raw:
        raise ConfigError("export dir required")
    export_dir = Path(export_raw).expanduser().resolve()
    if not export_dir.is_dir() or not os.access(export_dir, os.R_OK | os.X_OK):
        raise ConfigError(f"export dir not found: {export_dir}")

    use_https = parse_flag(params.get("https"), True)
    www_mode = str(params.get("www_mode") or "keep").strip()
    if www_mode not in WWW_MODES:
        www_mode = "keep"
    force_host = parse_flag(params.get("force_host"), False)
    primary_lang = str(params.get("primary_lang") or "").strip() or DEFAULT_PRIMARY_LANG

    domain, host = normalize_domain(str(params.get("domain") or ""), use_https, www_mode)

    return RunConfig(
        export_dir=export_dir,
        domain=domain,
        host=host,
        use_https=use_https,
        www_mode=www_mode,
        force_host=force_host,
        primary_lang=primary_lang,
        zip_name=archive_name(params.get("zip_name"), now),
    )


# ---------------------------------------------------------------- scanning


def page_file_name(slug: str, lang: str, is_home: bool, primary_lang: str, suffix: str = ".html") -> str:
    if is_home:
        return f"index{suffix}" if lang == primary_lang else f"index-{lang}{suffix}"
    if lang == primary_lang:
        return f"{slug}{suffix}"
    return f"{slug}-{lang}{suffix}"


def classify_page(relative_path: str, primary_lang: str) -> tuple[str, str, bool]:
    """Map an export-relative page path to (slug, language, is_home).

    Home rows only apply at the export root; below it the directory part is
    kept in the slug so every page gets a distinct, reversible identity.
    """
    rel = PurePosixPath(relative_path)
    base = rel.stem
    prefix = "" if rel.parent == PurePosixPath(".") else f"{rel.parent.as_posix()}/"

    if not prefix:
        if base == "index":
            return "index", primary_lang, True
        match = HOME_LANG_RE.match(base)
        if match:
            return "index", match.group(1), True

    match = SLUG_LANG_RE.match(base)
    if match:
        return prefix + match.group(1), match.group(2), False
    return prefix + base, primary_lang, False


def is_canonical(variant: PageVariant, primary_lang: str) -> bool:
    """True when the URL built for a variant points back at its own file."""
    expected = page_file_name(variant.slug, variant.lang, variant.is_home, primary_lang, variant.suffix)
    return variant.relative_path == expected


def order_langs(langs: Any, primary_lang: str) -> list[str]:
    return sorted(set(langs), key=lambda code: (code != primary_lang, code))


def scan_pages(export_dir: Path, primary_lang: str) -> ScanResult:
    candidates: dict[tuple[str, str], list[PageVariant]] = defaultdict(list)
    for path in export_dir.rglob("*"):
        if path.suffix.lower() != ".html" or not path.is_file():
            continue
        rel = path.relative_to(export_dir).as_posix()
        slug, lang, is_home = classify_page(rel, primary_lang)
        candidates[(slug, lang)].append(
            PageVariant(slug=slug, lang=lang, relative_path=rel, is_home=is_home, suffix=path.suffix)
        )

    if not candidates:
        raise ScanError(f"no pages found in {export_dir}")

    by_slug: dict[str, dict[str, PageVariant]] = defaultdict(dict)
    shadowed: list[str] = []
    mismatched: list[str] = []
    for (slug, lang), found in candidates.items():
        found.sort(key=lambda variant: (not is_canonical(variant, primary_lang), variant.relative_path))
        by_slug[slug][lang] = found[0]
        shadowed.extend(variant.relative_path for variant in found[1:])
        if not is_canonical(found[0], primary_lang):
            mismatched.append(found[0].relative_path)

    pages: dict[str, dict[str, PageVariant]] = {}
    for slug in sorted(by_slug, key=lambda value: (value != "index", value)):
        variants = by_slug[slug]
        pages[slug] = {lang: variants[lang] for lang in order_langs(variants, primary_lang)}

    langs = order_langs([primary_lang, *(lang for _, lang in candidates)], primary_lang)
    return ScanResult(pages=pages, langs=langs, shadowed=sorted(shadowed), mismatched=sorted(mismatched))


# ---------------------------------------------------------------- urls


class UrlBuilder:
    def __init__(self, config: RunConfig) -> None:
        self.config = config

    def base(self) -> str:
        return self.config.domain.rstrip("/")

    def file_for(self, slug: str, lang: str, is_home: bool, suffix: str = ".html") -> str:
        return page_file_name(slug, lang, is_home, self.config.primary_lang, suffix)

    def path_for(self, slug: str, lang: str, is_home: bool, suffix: str = ".html") -> str:
        if is_home and lang == self.config.primary_lang:
            return "/"
        return "/" + self.file_for(slug, lang, is_home, suffix)

    def absolute(self, path: str) -> str:
        if not path.startswith("/"):
            path = f"/{path}"
        return self.base() + path

    def url_for(self, variant: PageVariant) -> str:
        return self.absolute(self.path_for(variant.slug, variant.lang, variant.is_home, variant.suffix))


def alternate_links(page: Mapping[str, PageVariant], variant: PageVariant, urls: UrlBuilder) -> list[tuple[str, str]]:
    links = [(lang, urls.url_for(other)) for lang, other in page.items()]
    if variant.lang not in page:
        links.append((variant.lang, urls.url_for(variant)))
    default = page.get(urls.config.primary_lang, variant)
    links.append(("x-default", urls.url_for(default)))
    return links


# ---------------------------------------------------------------- head rewriting


def tag_attrs(tag: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for match in ATTR_RE.finditer(tag):
        value = next((group for group in match.groups()[1:] if group is not None), "")
        attrs.setdefault(match.group(1).lower(), value)
    return attrs


def _meta_key(attrs: Mapping[str, str]) -> str:
    return (attrs.get("property") or attrs.get("name") or "").strip().lower()


def _is_generated_link(attrs: Mapping[str, str]) -> bool:
    rel = attrs.get("rel", "").lower().split()
    return "canonical" in rel or ("alternate" in rel and "hreflang" in attrs)


def strip_generated_tags(html: str) -> str:
    """Remove every tag this tool owns from an HTML document.

    Textual transform, not a parse. Handled shapes:
    - the whole ``<!-- SEO (export-generated) -->`` ... ``<!-- /SEO -->`` block;
    - ``<link ...>`` with ``rel`` containing ``canonical``, or ``alternate``
      together with an ``hreflang`` attribute;
    - ``<meta ...>`` whose ``property`` or ``name`` is ``og:url``/``twitter:url``.
    Attributes may come in any order, double-quoted, single-quoted or bare.
    Tags inside comments, scripts or containing a literal ``>`` in an
    attribute value are not recognised.
    """
    html = GENERATED_BLOCK_RE.sub("", html)
    html = LINK_TAG_RE.sub(lambda m: "" if _is_generated_link(tag_attrs(m.group(0))) else m.group(0), html)
    html = META_TAG_RE.sub(lambda m: "" if _meta_key(tag_attrs(m.group(0))) in URL_META_KEYS else m.group(0), html)
    return html


def rewrite_relative_image_refs(html: str, page_url: str) -> str:
    """Make relative og:image/twitter:image values absolute against ``page_url``.

    Only quoted ``content`` attributes are rewritten. Nothing changes while the
    page URL still carries the placeholder origin.
    """
    if page_url.startswith(PLACEHOLDER):
        return html

    def fix(match: re.Match[str]) -> str:
        tag = match.group(0)
        attrs = tag_attrs(tag)
        if _meta_key(attrs) not in IMAGE_META_KEYS:
            return tag
        value = attrs.get("content", "").strip()
        if not value or ABSOLUTE_URL_RE.match(value) or value.startswith(PLACEHOLDER):
            return tag
        absolute = urljoin(page_url, value)
        return CONTENT_ATTR_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{absolute}{m.group(2)}", tag, count=1)

    return META_ONLY_RE.sub(fix, html)


def build_head_tags(page: Mapping[str, PageVariant], variant: PageVariant, urls: UrlBuilder) -> list[HeadTag]:
    canonical = urls.url_for(variant)
    tags = [HeadTag("link", (("rel", "canonical"), ("href", canonical)))]
    for code, href in alternate_links(page, variant, urls):
        tags.append(HeadTag("link", (("rel", "alternate"), ("hreflang", code), ("href", href))))
    tags.append(HeadTag("meta", (("property", "og:url"), ("content", canonical))))
    tags.append(HeadTag("meta", (("name", "twitter:url"), ("content", canonical))))
    return tags


def render_head_block(tags: list[HeadTag]) -> str:
    body = "\n".join(tag.render() for tag in tags)
    return f"\n{BLOCK_OPEN}\n{body}\n{BLOCK_CLOSE}\n"


def insert_head_block(html: str, block: str) -> str:
    match = HEAD_CLOSE_RE.search(html)
    if match is None:
        return html + block
    return html[: match.start()] + block + html[match.start() :]


def finalize_head(html: str, page: Mapping[str, PageVariant], variant: PageVariant, urls: UrlBuilder) -> str:
    html = strip_generated_tags(html)
    html = insert_head_block(html, render_head_block(build_head_tags(page, variant, urls)))
    return rewrite_relative_image_refs(html, urls.url_for(variant))


def inject_page(export_dir: Path, page: Mapping[str, PageVariant], variant: PageVariant, urls: UrlBuilder) -> str:
    path = export_dir / variant.relative_path
    try:
        raw = path.read_bytes()
    except OSError:
        return "skipped"
    html = raw.decode("utf-8", errors="surrogateescape")
    updated = finalize_head(html, page, variant, urls)
    if updated == html:
        return "unchanged"
    try:
        path.write_bytes(updated.encode("utf-8", errors="surrogateescape"))
    except OSError:
        return "skipped"
    return "rewritten"


def inject_all(config: RunConfig, scan: ScanResult, urls: UrlBuilder, workers: int = 4) -> dict[str, str]:
    statuses: dict[str, str] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = {
            pool.submit(inject_page, config.export_dir, scan.pages[variant.slug], variant, urls): variant
            for variant in scan.variants()
        }
        for fut in concurrent.futures.as_completed(futures):
            statuses[futures[fut].relative_path] = fut.result()
    return dict(sorted(statuses.items()))


# ---------------------------------------------------------------- verification


def rel_values(node: Any) -> list[str]:
    rel_attr = node.get("rel") or []
    if isinstance(rel_attr, list):
        return [str(item).lower() for item in rel_attr]
    return str(rel_attr).lower().split()


def verify_head(html: str, page: Mapping[str, PageVariant], variant: PageVariant, urls: UrlBuilder) -> list[str]:
    soup = BeautifulSoup(html, "lxml")
    expected = urls.url_for(variant)
    problems: list[str] = []

    canonical = [node for node in soup.find_all("link", href=True) if "canonical" in rel_values(node)]
    if len(canonical) != 1:
        problems.append(f"expected 1 canonical link, found {len(canonical)}")
    elif canonical[0].get("href") != expected:
        problems.append(f"canonical points to {canonical[0].get('href')} instead of {expected}")

    found_codes = sorted(
        str(node.get("hreflang"))
        for node in soup.find_all("link", href=True)
        if "alternate" in rel_values(node) and node.get("hreflang")
    )
    expected_codes = sorted(code for code, _ in alternate_links(page, variant, urls))
    if found_codes != expected_codes:
        problems.append(f"hreflang set {found_codes} does not match {expected_codes}")

    for attr, key in (("property", "og:url"), ("name", "twitter:url")):
        node = soup.find("meta", attrs={attr: key})
        if node is None or node.get("content") != expected:
            problems.append(f"{key} does not match canonical")
    return problems


def verify_pages(config: RunConfig, scan: ScanResult, urls: UrlBuilder, statuses: Mapping[str, str]) -> dict[str, list[str]]:
    issues: dict[str, list[str]] = {}
    for variant in scan.variants():
        if statuses.get(variant.relative_path) == "skipped":
            continue
        try:
            html = (config.export_dir / variant.relative_path).read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        problems = verify_head(html, scan.pages[variant.slug], variant, urls)
        if problems:
            issues[variant.relative_path] = problems
    return dict(sorted(issues.items()))


# ---------------------------------------------------------------- sitemap / robots


def build_sitemap(scan: ScanResult, urls: UrlBuilder, generated_at: datetime) -> ET.Element:
    ET.register_namespace("", SITEMAP_NS)
    ET.register_namespace("xhtml", XHTML_NS)
    lastmod = iso_utc(generated_at)
    urlset = ET.Element(f"{{{SITEMAP_NS}}}urlset")
    for variant in scan.variants():
        url_node = ET.SubElement(urlset, f"{{{SITEMAP_NS}}}url")
        ET.SubElement(url_node, f"{{{SITEMAP_NS}}}loc").text = urls.url_for(variant)
        ET.SubElement(url_node, f"{{{SITEMAP_NS}}}lastmod").text = lastmod
        ET.SubElement(url_node, f"{{{SITEMAP_NS}}}priority").text = "1.0" if variant.is_home else "0.8"
        for code, href in alternate_links(scan.pages[variant.slug], variant, urls):
            link = ET.SubElement(url_node, f"{{{XHTML_NS}}}link")
            link.set("rel", "alternate")
            link.set("hreflang", code)
            link.set("href", href)
    return urlset


def serialize_xml(elem: ET.Element) -> bytes:
    ET.indent(ET.ElementTree(elem), space="  ")
    return ET.tostring(elem, encoding="utf-8", xml_declaration=True)


def render_robots(urls: UrlBuilder) -> str:
    lines = ["User-agent: *", "Allow: /", ""]
    lines.extend(f"Disallow: {path}" for path in ROBOTS_DISALLOW)
    lines.extend(["", f"Sitemap: {urls.absolute('/sitemap.xml')}"])
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------- redirect configs


def plan_redirects(config: RunConfig) -> RedirectPlan:
    return RedirectPlan(
        force_https=config.use_https,
        force_host=config.force_host and bool(config.host),
        host=config.host,
    )


def render_htaccess(plan: RedirectPlan) -> str:
    lines = ["# Canonical redirects", "RewriteEngine On"]
    if plan.force_https:
        target = plan.host if plan.force_host else "%{HTTP_HOST}"
        lines.extend(
            [
                "<IfModule mod_headers.c>",
                f'Header always set Strict-Transport-Security "{HSTS_VALUE}"',
                "</IfModule>",
                "RewriteCond %{HTTPS} !=on",
                f"RewriteRule ^ https://{target}%{{REQUEST_URI}} [L,R=301]",
            ]
        )
    if plan.force_host:
        lines.extend(
            [
                f"RewriteCond %{{HTTP_HOST}} !^{re.escape(plan.host)}$ [NC]",
                f"RewriteRule ^ {plan.scheme}://{plan.host}%{{REQUEST_URI}} [L,R=301]",
            ]
        )
    return "\n".join(lines) + "\n"


def render_nginx(plan: RedirectPlan) -> str:
    host = plan.host or FALLBACK_HOST
    lines: list[str] = []
    if plan.force_host:
        lines.extend(
            [
                "server {",
                "    listen 80 default_server;",
                "    server_name _;",
                f"    return 301 {plan.scheme}://{host}$request_uri;",
                "}",
                "",
            ]
        )

    lines.append("server {")
    if plan.force_https:
        if not plan.force_host:
            lines.append("    listen 80;")
        lines.append("    listen 443 ssl;")
    else:
        lines.append("    listen 80;")
    lines.append(f"    server_name {host};")
    lines.append(f"    root /var/www/{host}/public; # replace with the deployed export path")
    lines.append("    index index.html;")
    if plan.force_host:
        lines.extend(
            [
                f"    if ($host != {host}) {{",
                f"        return 301 {plan.scheme}://{host}$request_uri;",
                "    }",
            ]
        )
    if plan.force_https:
        if not plan.force_host:
            lines.extend(
                [
                    "    if ($scheme = http) {",
                    "        return 301 https://$host$request_uri;",
                    "    }",
                ]
            )
        lines.append(f'    add_header Strict-Transport-Security "{HSTS_VALUE}" always;')
        lines.append(f"    # ssl_certificate /etc/letsencrypt/live/{host}/fullchain.pem;")
        lines.append(f"    # ssl_certificate_key /etc/letsencrypt/live/{host}/privkey.pem;")
    lines.extend(["    location / {", "        try_files $uri $uri/ =404;", "    }", "}"])
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------- diagnostics


def render_diagnostics(
    config: RunConfig,
    scan: ScanResult,
    generated_at: datetime,
    statuses: Mapping[str, str],
    verification: Mapping[str, list[str]],
) -> str:
    lines = [
        f"Export diagnostics (generated {iso_utc(generated_at)})",
        f"Domain: {'(none)' if config.placeholder else config.domain}",
        f"Primary language: {config.primary_lang}",
        f"Languages detected: {', '.join(scan.langs)}",
    ]
    lines.extend(f" - {slug}: {', '.join(page)}" for slug, page in scan.pages.items())
    lines.append(f"Total HTML files: {scan.file_count}")
    if config.placeholder:
        lines.append(
            f"WARNING: no domain set, every URL starts with {PLACEHOLDER}. "
            "Replace it before deploying robots.txt and sitemap.xml."
        )
    lines.append("")
    lines.append(f"robots.txt: absolute Sitemap -> {f'WARNING ({PLACEHOLDER})' if config.placeholder else 'OK'}")
    lines.append("sitemap.xml: static XML with xhtml:link -> OK")
    lines.append(".htaccess/nginx.conf: generated -> check and deploy manually")

    skipped = [path for path, status in statuses.items() if status == "skipped"]
    if skipped:
        lines.append("")
        lines.append("Skipped pages (unreadable or unwritable):")
        lines.extend(f" - {path}" for path in skipped)
    if scan.shadowed:
        lines.append("")
        lines.append("Shadowed pages (same slug and language as another file, left untouched):")
        lines.extend(f" - {path}" for path in scan.shadowed)
    if scan.mismatched:
        lines.append("")
        lines.append("Pages whose URL differs from their file name (rename them or the link will 404):")
        urls = UrlBuilder(config)
        by_path = {variant.relative_path: variant for variant in scan.variants()}
        for path in scan.mismatched:
            variant = by_path[path]
            lines.append(f" - {path} -> {urls.path_for(variant.slug, variant.lang, variant.is_home, variant.suffix)}")
    lines.append("")
    if verification:
        lines.append("Head verification: issues found")
        for path, problems in verification.items():
            lines.extend(f" - {path}: {problem}" for problem in problems)
    else:
        lines.append("Head verification: OK")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------- packaging


def pack_export(export_dir: Path, archive_path: Path) -> Path:
    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        if archive_path.exists():
            archive_path.unlink()
        target = archive_path.resolve()
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED, strict_timestamps=False) as zf:
            for path in sorted(export_dir.rglob("*")):
                if not path.is_file() or path.resolve() == target:
                    continue
                zf.write(path, path.relative_to(export_dir).as_posix())
    except (OSError, ValueError, zipfile.BadZipFile) as exc:
        raise PackagingError(f"cannot create archive {archive_path}: {exc}") from exc
    return archive_path


# ---------------------------------------------------------------- pipeline


def finalize_export(
    config: RunConfig,
    archive_dir: str | Path | None = None,
    workers: int = 4,
    now: datetime | None = None,
) -> RunResult:
    generated_at = (now or datetime.now(UTC)).replace(microsecond=0)
    export_dir = config.export_dir

    scan = scan_pages(export_dir, config.primary_lang)
    urls = UrlBuilder(config)

    statuses = inject_all(config, scan, urls, workers=workers)
    verification = verify_pages(config, scan, urls, statuses)

    (export_dir / "sitemap.xml").write_bytes(serialize_xml(build_sitemap(scan, urls, generated_at)))
    (export_dir / "robots.txt").write_text(render_robots(urls), encoding="utf-8")
    plan = plan_redirects(config)
    (export_dir / ".htaccess").write_text(render_htaccess(plan), encoding="utf-8")
    (export_dir / "nginx.conf").write_text(render_nginx(plan), encoding="utf-8")
    (export_dir / "diagnostics.txt").write_text(
        render_diagnostics(config, scan, generated_at, statuses, verification),
        encoding="utf-8",
    )
    generated = ["sitemap.xml", "robots.txt", ".htaccess", "nginx.conf", "diagnostics.txt"]

    archive_root = Path(archive_dir) if archive_dir else Path(tempfile.gettempdir())
    archive_path = pack_export(export_dir, archive_root / config.zip_name)

    return RunResult(
        config=config,
        scan=scan,
        generated_at=generated_at,
        statuses=statuses,
        verification=verification,
        generated_files=generated,
        archive_path=archive_path,
    )


def exit_code_for(exc: FinalizerError) -> int:
    if isinstance(exc, ConfigError):
        return EXIT_CONFIG
    if isinstance(exc, ScanError):
        return EXIT_MISSING_INPUT
    return EXIT_PACKAGING


def run_finalize(args: argparse.Namespace) -> int:
    params = {
        "export_dir": args.export_dir,
        "domain": args.domain,
        "https": args.https,
        "www_mode": args.www_mode,
        "force_host": args.force_host,
        "primary_lang": args.primary_lang,
        "zip_name": args.zip_name,
    }
    try:
        config = resolve_options(params)
        result = finalize_export(config, archive_dir=args.archive_dir or None, workers=args.workers)
    except FinalizerError as exc:
        print(f"Error: {exc}")
        return exit_code_for(exc)

    if args.json:
        print(json.dumps(result.to_summary(), indent=2))
        return 0

    summary = result.to_summary()
    print(f"Domain: {f'(none, using {PLACEHOLDER})' if config.placeholder else config.domain}")
    print(f"Languages: {', '.join(result.scan.langs)}")
    print(f"HTML files: {summary['html_files']}")
    print(f"Rewritten: {summary['rewritten']} (unchanged: {summary['unchanged']}, skipped: {len(summary['skipped'])})")
    print(f"Head verification issues: {len(result.verification)}")
    for name in result.generated_files:
        print(f"Generated: {config.export_dir / name}")
    print(f"Archive: {result.archive_path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Finalize a static multi-language export for deployment.")
    parser.add_argument("--export-dir", required=True, help="Root directory of the exported site")
    parser.add_argument("--domain", default="", help="Target domain; omit to keep the {{BASE_URL}} placeholder")
    parser.add_argument(
        "--https",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Use https URLs and emit HTTPS upgrade/HSTS rules",
    )
    parser.add_argument("--www-mode", choices=list(WWW_MODES), default="keep")
    parser.add_argument("--force-host", action="store_true", help="Redirect every other host to the resolved host")
    parser.add_argument("--primary-lang", default=DEFAULT_PRIMARY_LANG, help="Language of unsuffixed pages")
    parser.add_argument("--zip-name", default="", help="Archive file name (default: site-<timestamp>.zip)")
    parser.add_argument("--archive-dir", default="", help="Where to write the archive (default: system temp dir)")
    parser.add_argument("--workers", type=int, default=4, help="Parallel page rewrites")
    parser.add_argument("--json", action="store_true", help="Print a JSON run summary")
    parser.set_defaults(func=run_finalize)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
