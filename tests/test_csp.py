"""Tests for the Content-Security-Policy loader."""

import json

import pytest

from spa_proxy.csp import PolicyConfigError, format_policy, load_policy


class TestFormatPolicy:
    def test_lists_and_strings(self):
        policy = format_policy(
            {"default-src": ["'self'"], "img-src": ["'self'", "data:"], "script-src": "'self'"}
        )
        assert policy == "default-src 'self'; img-src 'self' data:; script-src 'self'"

    def test_directive_without_sources(self):
        assert format_policy({"upgrade-insecure-requests": []}) == "upgrade-insecure-requests"

    def test_rejects_bad_sources(self):
        with pytest.raises(PolicyConfigError):
            format_policy({"default-src": 42})


class TestLoadPolicy:
    def test_reads_file(self, project):
        assert load_policy(project / "csp.json") == (
            "default-src 'self'; img-src 'self' data:; script-src 'self'"
        )

    def test_missing_file(self, tmp_path):
        with pytest.raises(PolicyConfigError):
            load_policy(tmp_path / "csp.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "csp.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PolicyConfigError):
            load_policy(path)

    def test_empty_object(self, tmp_path):
        path = tmp_path / "csp.json"
        path.write_text(json.dumps({}), encoding="utf-8")
        with pytest.raises(PolicyConfigError):
            load_policy(path)
