"""Shared fixtures: a throwaway project directory laid out like a React app."""

import json

import pytest

from spa_proxy.config import Settings

SAMPLE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <link rel="icon" href="%PUBLIC_URL%/favicon.ico" />
  <title>Sample App</title>
</head>
<body>
  <div id="root"></div>
</body>
</html>
"""

SAMPLE_POLICY = {
    "default-src": ["'self'"],
    "img-src": ["'self'", "data:"],
    "script-src": "'self'",
}


@pytest.fixture
def project(tmp_path):
    """A project root with package.json, public/ and csp.json."""
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text(SAMPLE_TEMPLATE, encoding="utf-8")
    (public / "favicon.ico").write_bytes(b"\x00\x00\x01\x00")
    (public / "images").mkdir()
    (public / "images" / "logo.svg").write_text("<svg/>", encoding="utf-8")

    (tmp_path / "package.json").write_text(
        json.dumps(
            {
                "name": "sample-app",
                "homepage": "/app/",
                "build": {"entrypoints": ["src/index.tsx"]},
                "externalFiles": {"development": ["react-devtools"], "production": []},
            }
        ),
        encoding="utf-8",
    )
    (tmp_path / "csp.json").write_text(json.dumps(SAMPLE_POLICY), encoding="utf-8")
    return tmp_path


@pytest.fixture
def settings(project):
    return Settings(PROJECT_ROOT=str(project), NODE_ENV="development", PROXY_PORT=3100)


@pytest.fixture
def production_settings(project):
    return Settings(PROJECT_ROOT=str(project), NODE_ENV="production", PROXY_PORT=3100)
