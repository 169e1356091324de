"""HTML document assembly: template substitution and resource tag injection."""

import logging
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, List, Optional

from bs4 import BeautifulSoup

from spa_proxy.config import SiteConfig
from spa_proxy.csp import META_HTTP_EQUIV, PolicyConfigError

logger = logging.getLogger(__name__)

# Kept for compatibility with react-scripts templates
PUBLIC_URL_PLACEHOLDER = "%PUBLIC_URL%"

# Output directories that are only referenced from other bundled files
RESERVED_DIRS = frozenset({"assets", "chunks"})

SCRIPT_EXT = ".js"
STYLE_EXT = ".css"

PolicyProvider = Callable[[], str]


def load_template(path: Path) -> str:
    """Read the HTML template. A missing template is a fatal startup error."""
    return Path(path).read_text(encoding="utf-8")


def _first_segment(path: str) -> str:
    return path.lstrip("/").split("/", 1)[0]


def injectable_files(files: Iterable[str]) -> List[str]:
    """Drop everything living under a reserved output directory."""
    return [f for f in files if _first_segment(f) not in RESERVED_DIRS]


def _ensure_structure(soup: BeautifulSoup):
    """Return (head, body), creating any of html/head/body that are missing."""
    html = soup.find("html")
    if html is None:
        html = soup.new_tag("html")
        soup.append(html)
    head = soup.find("head")
    if head is None:
        head = soup.new_tag("head")
        html.insert(0, head)
    body = soup.find("body")
    if body is None:
        body = soup.new_tag("body")
        html.append(body)
    return head, body


def assemble(
    template: str,
    files: Iterable[str],
    path_prefix: str,
    is_production: bool,
    policy: Optional[PolicyProvider] = None,
) -> str:
    """
    Build the served document from a template and the generated files.

    Scripts are appended to the body first, then stylesheets, each group in
    input order. In production the CSP meta tag becomes the last child of
    the head; ``policy`` must then be given.
    """
    url_prefix = path_prefix.rstrip("/")
    html = template.replace(PUBLIC_URL_PLACEHOLDER, url_prefix)

    soup = BeautifulSoup(html, "lxml")
    head, body = _ensure_structure(soup)

    candidates = injectable_files(files)

    for script in (f for f in candidates if PurePosixPath(f).suffix == SCRIPT_EXT):
        body.append(soup.new_tag("script", attrs={"src": f"{url_prefix}{script}"}))

    for style in (f for f in candidates if PurePosixPath(f).suffix == STYLE_EXT):
        body.append(
            soup.new_tag("link", attrs={"rel": "stylesheet", "href": f"{url_prefix}{style}"})
        )

    if is_production:
        logger.info("Adding CSP policy tag")
        if policy is None:
            raise PolicyConfigError("Production build requires a security policy")
        try:
            directive = policy()
        except PolicyConfigError:
            raise
        except Exception as exc:
            raise PolicyConfigError(f"Could not obtain security policy: {exc}") from exc
        head.append(soup.new_tag("meta", attrs={"http-equiv": META_HTTP_EQUIV, "content": directive}))

    return str(soup)


def assemble_for_site(
    template: str,
    files: Iterable[str],
    site: SiteConfig,
    policy: Optional[PolicyProvider] = None,
) -> str:
    return assemble(template, files, site.path_prefix, site.is_production, policy)
