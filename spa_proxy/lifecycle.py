"""Startup ordering and shutdown for the dev server."""

import asyncio
import logging
from functools import partial
from typing import Callable, Optional, Sequence

from spa_proxy.bundler import Bundler, UpstreamTarget
from spa_proxy.config import Settings, SiteConfig
from spa_proxy.csp import load_policy
from spa_proxy.document import assemble_for_site, load_template
from spa_proxy.proxy import FallbackProxy

logger = logging.getLogger(__name__)

# esbuild emits these names for the default entry point
DEFAULT_FILES = ("/index.js", "/index.css")

ProxyFactory = Callable[[UpstreamTarget, str], FallbackProxy]


class DevServer:
    """
    Owns the process lifetime.

    Startup is strictly sequential: the document is assembled once, then the
    bundler is started, then the proxy starts listening. The proxy never sees
    a connection before the document exists.
    """

    def __init__(
        self,
        site: SiteConfig,
        settings: Settings,
        bundler: Bundler,
        *,
        files: Sequence[str] = DEFAULT_FILES,
        proxy_factory: ProxyFactory = FallbackProxy,
    ):
        self.site = site
        self.settings = settings
        self.bundler = bundler
        self.files = tuple(files)
        self.proxy_factory = proxy_factory
        self.document: Optional[str] = None
        self.upstream: Optional[UpstreamTarget] = None
        self.proxy: Optional[FallbackProxy] = None
        self._stopped = asyncio.Event()
        self._shutting_down = False

    def build_document(self) -> str:
        logger.info("Generating index.html...")
        template = load_template(self.settings.template_path)
        document = assemble_for_site(
            template,
            self.files,
            self.site,
            policy=partial(load_policy, self.settings.csp_config),
        )
        logger.info("Done generating index.html")
        return document

    async def start(self) -> None:
        self.document = self.build_document()

        logger.info("Starting esbuild devserver")
        self.upstream = await self.bundler.start()

        logger.info("Starting proxy to serve index.html")
        self.proxy = self.proxy_factory(self.upstream, self.document)
        try:
            await self.proxy.start(self.settings.PROXY_PORT, self.settings.PROXY_HOST)
        except Exception:
            await self.proxy.wait_closed()
            await self.bundler.stop()
            raise

    async def shutdown(self) -> None:
        """Stop accepting connections, stop the bundler, close the listener."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Shutting down dev server")
        try:
            if self.proxy is not None:
                self.proxy.stop()
            await self.bundler.stop()
            if self.proxy is not None:
                await self.proxy.wait_closed()
        finally:
            self._stopped.set()

    async def run(self) -> None:
        await self.start()
        await self._stopped.wait()
