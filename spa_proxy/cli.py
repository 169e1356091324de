"""Command-line entry point and the signal adapter for the dev server.

    python -m spa_proxy                  # serve on port 3000
    python -m spa_proxy --port 4000      # override PROXY_PORT
    NODE_ENV=production python -m spa_proxy
"""

import argparse
import asyncio
import json
import logging
import signal
from typing import List, Optional

from pydantic import ValidationError

from spa_proxy.bundler import BundlerStartError, EsbuildServer
from spa_proxy.config import build_site_config, load_package_manifest, load_settings
from spa_proxy.csp import PolicyConfigError
from spa_proxy.lifecycle import DevServer
from spa_proxy.proxy import ProxyStartError

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_shutdown_handlers(loop: asyncio.AbstractEventLoop, server: DevServer) -> None:
    """Route interrupt signals to ``server.shutdown()``."""

    def _on_signal(signum: int) -> None:
        logger.info("Detected %s, exiting. Bye!", signal.Signals(signum).name)
        loop.create_task(server.shutdown())

    for signum in SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(signum, _on_signal, signum)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(signum, lambda s, _frame: loop.call_soon_threadsafe(_on_signal, s))


async def serve(args: argparse.Namespace) -> None:
    overrides = {}
    if args.root:
        overrides["PROJECT_ROOT"] = args.root
    if args.port is not None:
        overrides["PROXY_PORT"] = args.port
    settings = load_settings(**overrides)

    manifest = load_package_manifest(settings.package_json)
    site = build_site_config(settings, manifest)
    logger.info("Entrypoints: %s", ",".join(manifest.build.entrypoints))

    server = DevServer(site, settings, EsbuildServer(site, settings, manifest))
    install_shutdown_handlers(asyncio.get_running_loop(), server)
    await server.run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spa-proxy",
        description="Serve an esbuild dev build behind a proxy with SPA fallback.",
    )
    parser.add_argument("--port", type=int, default=None, help="Proxy port (default 3000)")
    parser.add_argument("--root", default=None, help="Project root containing package.json")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    try:
        asyncio.run(serve(args))
    except (
        FileNotFoundError,
        json.JSONDecodeError,
        ValidationError,
        PolicyConfigError,
        BundlerStartError,
        ProxyStartError,
    ) as exc:
        logger.error("Startup failed: %s", exc)
        return 1
    return 0
