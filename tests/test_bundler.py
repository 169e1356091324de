"""Tests for the esbuild collaborator: command line, serve dir, process startup."""

import socket
import sys

import pytest

from spa_proxy.bundler import (
    BundlerStartError,
    EsbuildServer,
    UpstreamTarget,
    prepare_serve_dir,
)
from spa_proxy.config import Settings, build_site_config, load_package_manifest


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _esbuild(settings):
    manifest = load_package_manifest(settings.package_json)
    return EsbuildServer(build_site_config(settings, manifest), settings, manifest)


class TestUpstreamTarget:
    def test_base_url(self):
        assert UpstreamTarget(host="127.0.0.1", port=8000).base_url == "http://127.0.0.1:8000"


class TestCommand:
    def test_development_flags(self, settings, project):
        cmd = _esbuild(settings).command()
        serve_dir = project.resolve() / "build" / "serve"

        assert cmd[0] == "esbuild"
        assert cmd[1] == str(project.resolve() / "src" / "index.tsx")
        assert "--bundle" in cmd
        assert f"--outdir={serve_dir}" in cmd
        assert f"--servedir={serve_dir}" in cmd
        assert "--serve=127.0.0.1:8000" in cmd
        assert "--entry-names=[name]" in cmd
        assert "--asset-names=assets/[name]" in cmd
        assert "--chunk-names=chunks/[name]" in cmd
        assert "--public-path=/app/" in cmd
        assert "--target=es2020" in cmd
        assert "--sourcemap" in cmd
        assert "--minify" not in cmd
        assert "--external:react-devtools" in cmd
        assert '--define:process.env.NODE_ENV="development"' in cmd
        assert "--loader:.woff2=file" in cmd

    def test_production_flags(self, production_settings):
        cmd = _esbuild(production_settings).command()
        assert "--minify" in cmd
        assert "--drop:debugger" in cmd
        assert "--sourcemap" not in cmd
        assert "--external:react-devtools" not in cmd
        assert '--define:process.env.NODE_ENV="production"' in cmd

    def test_upstream_address_from_settings(self, project):
        s = Settings(PROJECT_ROOT=str(project), UPSTREAM_HOST="localhost", UPSTREAM_PORT=9001)
        server = _esbuild(s)
        assert "--serve=localhost:9001" in server.command()
        assert server.target == UpstreamTarget(host="localhost", port=9001)


class TestPrepareServeDir:
    def test_copies_public_without_index(self, settings):
        prepare_serve_dir(settings.public_dir, settings.serve_dir)
        names = sorted(p.name for p in settings.serve_dir.iterdir())
        assert names == ["favicon.ico", "images"]
        assert (settings.serve_dir / "images" / "logo.svg").read_text() == "<svg/>"

    def test_removes_stale_output(self, settings):
        settings.serve_dir.mkdir(parents=True)
        (settings.serve_dir / "stale.js").write_text("old")
        prepare_serve_dir(settings.public_dir, settings.serve_dir)
        assert not (settings.serve_dir / "stale.js").exists()

    def test_missing_public_dir(self, tmp_path):
        serve_dir = tmp_path / "build" / "serve"
        prepare_serve_dir(tmp_path / "public", serve_dir)
        assert serve_dir.is_dir()
        assert list(serve_dir.iterdir()) == []


class TestProcess:
    @pytest.mark.asyncio
    async def test_missing_binary(self, project):
        s = Settings(PROJECT_ROOT=str(project), ESBUILD_BIN=str(project / "no-such-esbuild"))
        with pytest.raises(BundlerStartError):
            await _esbuild(s).start()

    @pytest.mark.asyncio
    async def test_process_exiting_early(self, project):
        # The interpreter rejects esbuild's arguments and exits straight away
        s = Settings(
            PROJECT_ROOT=str(project),
            ESBUILD_BIN=sys.executable,
            UPSTREAM_PORT=_free_port(),
            UPSTREAM_START_TIMEOUT=10,
        )
        server = _esbuild(s)
        with pytest.raises(BundlerStartError):
            await server.start()
        await server.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, settings):
        await _esbuild(settings).stop()
