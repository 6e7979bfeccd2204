from aiohttp import web


async def start_app(app: web.Application) -> tuple[web.AppRunner, int]:
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()

    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()

    if site._server is None or not site._server.sockets:
        await runner.cleanup()
        raise RuntimeError("server did not start")

    port = site._server.sockets[0].getsockname()[1]
    return runner, port
