"""esbuild collaborator: serve directory preparation and the serve subprocess."""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import AsyncIterator, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict

from spa_proxy.config import PackageManifest, Settings, SiteConfig

logger = logging.getLogger(__name__)

# Loaders for files imported from source that esbuild copies verbatim
FILE_LOADERS = (".woff", ".woff2", ".png")


class BundlerStartError(RuntimeError):
    """The bundler's serving facility could not be started."""


class UpstreamTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


class Bundler(Protocol):
    """What the dev server needs from a bundler."""

    # Output file names are stable across rebuilds, so nothing consumes these.
    rebuild_notifications: Optional[AsyncIterator[None]]

    async def start(self) -> UpstreamTarget: ...

    async def stop(self) -> None: ...


def prepare_serve_dir(public_dir: Path, serve_dir: Path) -> None:
    """Recreate ``serve_dir`` with everything from ``public_dir`` but index.html."""
    if serve_dir.exists():
        logger.info("Serve directory already exists, cleaning up...")
        shutil.rmtree(serve_dir)
    serve_dir.mkdir(parents=True)

    if not public_dir.is_dir():
        return

    logger.info("Copying files from %s", public_dir)
    for entry in public_dir.iterdir():
        # index.html is generated by the document assembler
        if entry.name == "index.html":
            continue
        dest = serve_dir / entry.name
        if entry.is_dir():
            shutil.copytree(entry, dest)
        else:
            shutil.copy2(entry, dest)
    logger.info("Done copying files")


class EsbuildServer:
    """
    Runs ``esbuild --serve`` as a child process.

    The serve facility rebuilds on request, so it publishes no rebuild
    notifications. Entry names are ``[name]`` which keeps ``/index.js`` and
    ``/index.css`` stable across rebuilds.
    """

    rebuild_notifications: Optional[AsyncIterator[None]] = None

    def __init__(self, site: SiteConfig, settings: Settings, manifest: PackageManifest):
        self.site = site
        self.settings = settings
        self.manifest = manifest
        self.target = UpstreamTarget(host=settings.UPSTREAM_HOST, port=settings.UPSTREAM_PORT)
        self._process: Optional[asyncio.subprocess.Process] = None

    def command(self) -> List[str]:
        s = self.settings
        is_prod = self.site.is_production
        mode = "production" if is_prod else "development"
        entry_points = [str(s.root / e) for e in self.manifest.build.entrypoints]

        cmd = [
            s.ESBUILD_BIN,
            *entry_points,
            "--bundle",
            f"--outdir={s.serve_dir}",
            f"--servedir={s.serve_dir}",
            f"--serve={self.target.host}:{self.target.port}",
            "--entry-names=[name]",
            "--asset-names=assets/[name]",
            "--chunk-names=chunks/[name]",
            f"--public-path={self.manifest.homepage}",
            f"--target={','.join(self.manifest.build.target)}",
            "--main-fields=browser,module,main",
            "--tree-shaking=true",
            "--legal-comments=linked",
            "--jsx=automatic",
            f'--define:process.env.NODE_ENV="{mode}"',
        ]
        cmd += [f"--loader:{ext}=file" for ext in FILE_LOADERS]
        cmd += [f"--external:{name}" for name in self.manifest.externals(is_prod)]
        if is_prod:
            cmd += ["--minify", "--drop:debugger"]
        else:
            cmd.append("--sourcemap")
        return cmd

    async def _wait_until_listening(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.UPSTREAM_START_TIMEOUT
        while True:
            if self._process is not None and self._process.returncode is not None:
                raise BundlerStartError(
                    f"esbuild exited with code {self._process.returncode} during startup"
                )
            try:
                _, writer = await asyncio.open_connection(self.target.host, self.target.port)
            except OSError:
                if loop.time() >= deadline:
                    raise BundlerStartError(
                        f"esbuild did not listen on {self.target.base_url} "
                        f"within {self.settings.UPSTREAM_START_TIMEOUT}s"
                    )
                await asyncio.sleep(0.1)
                continue
            writer.close()
            await writer.wait_closed()
            return

    async def start(self) -> UpstreamTarget:
        """Prepare the serve directory, spawn esbuild and wait for its port."""
        prepare_serve_dir(self.settings.public_dir, self.settings.serve_dir)

        cmd = self.command()
        logger.debug("Spawning %s", " ".join(cmd))
        try:
            self._process = await asyncio.create_subprocess_exec(*cmd, cwd=str(self.settings.root))
        except OSError as exc:
            raise BundlerStartError(f"Could not launch {self.settings.ESBUILD_BIN}: {exc}") from exc

        try:
            await self._wait_until_listening()
        except BundlerStartError:
            await self.stop()
            raise

        logger.info("esbuild serving on %s", self.target.base_url)
        return self.target

    async def stop(self) -> None:
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("esbuild did not exit after SIGTERM, killing it")
            process.kill()
            await process.wait()
