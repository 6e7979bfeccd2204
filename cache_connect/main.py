from __future__ import annotations

import asyncio
import logging
import signal

import aiohttp
from aiohttp import web

from cache_connect.application.middleware import CacheConnect
from cache_connect.infrastructure.config import Settings, load_settings
from cache_connect.infrastructure.logging import configure_logging
from cache_connect.infrastructure.memory_store import FrameStore
from cache_connect.transport.http.proxy_app import create_proxy_app

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> FrameStore:
    return FrameStore(
        ttl=settings.ttl_ms,
        max_items=settings.max_items,
        max_memory_mb=settings.max_memory_mb,
        max_value_bytes=settings.max_value_bytes,
        cleanup_interval=settings.cleanup_interval,
    )


async def serve(settings: Settings | None = None) -> None:
    settings = settings or load_settings()
    if not settings.upstream_url:
        raise ValueError("CACHE_UPSTREAM_URL must be set")

    store = build_store(settings)
    connect = CacheConnect(store)
    session = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=settings.upstream_timeout),
        auto_decompress=True,
    )

    app = create_proxy_app(connect, store, settings.upstream_url, session)

    if settings.log_level == "DEBUG":
        access_log = logger
    else:
        access_log = None
        logging.getLogger("aiohttp.access").disabled = True

    runner = web.AppRunner(app, access_log=access_log)
    await runner.setup()
    site = web.TCPSite(runner, settings.host, settings.port)
    await site.start()
    logger.info(
        "Caching proxy for %s listening on %s:%s (ttl=%sms)",
        settings.upstream_url,
        settings.host,
        settings.port,
        settings.ttl_ms,
    )

    stopping = asyncio.Event()

    def _begin_shutdown() -> None:
        logger.info("Received shutdown signal, stopping caching proxy...")
        stopping.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _begin_shutdown)

    try:
        await stopping.wait()
    finally:
        await runner.cleanup()
        await session.close()
        store.stop()


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_format, settings.debug_selector)
    try:
        asyncio.run(serve(settings))
    except Exception:
        logger.exception("Failed to start caching proxy")
        raise


if __name__ == "__main__":
    main()
