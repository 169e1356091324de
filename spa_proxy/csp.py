"""Content-Security-Policy loading from csp.json."""

import json
import logging
from pathlib import Path
from typing import Dict, List, Union

logger = logging.getLogger(__name__)

META_HTTP_EQUIV = "Content-Security-Policy"


class PolicyConfigError(RuntimeError):
    """The security policy could not be obtained."""


def format_policy(directives: Dict[str, Union[str, List[str]]]) -> str:
    """Join a directive mapping into a policy string.

    ``{"default-src": ["'self'"], "img-src": ["'self'", "data:"]}`` becomes
    ``"default-src 'self'; img-src 'self' data:"``.
    """
    parts = []
    for name, sources in directives.items():
        if isinstance(sources, str):
            sources = [sources]
        elif not isinstance(sources, list) or not all(isinstance(s, str) for s in sources):
            raise PolicyConfigError(f"Invalid sources for directive {name!r}")
        parts.append(" ".join([name, *sources]).strip())
    return "; ".join(parts)


def load_policy(path: Path) -> str:
    """Read csp.json and return the directive string."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise PolicyConfigError(f"CSP config not found: {path}") from exc
    except (json.JSONDecodeError, OSError) as exc:
        raise PolicyConfigError(f"Could not read CSP config {path}: {exc}") from exc

    if not isinstance(data, dict) or not data:
        raise PolicyConfigError(f"CSP config {path} must be a non-empty object")
    return format_policy(data)
