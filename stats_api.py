# stats_api.py — FastAPI + uvicorn stats UI over the match/chat store
import asyncio
import logging
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse

from gigmatch.errors import StoreError

log = logging.getLogger("stats")


def create_app(store: Any) -> FastAPI:
    app = FastAPI(title="GigMatch Stats")

    @app.get("/", response_class=HTMLResponse)
    async def index():
        try:
            stats = await store.stats()
        except StoreError as e:
            log.warning("stats page unavailable: %s", e)
            return HTMLResponse("<html><body><h1>Store unavailable</h1></body></html>", status_code=503)
        return f"""
    <html><head><title>GigMatch Stats</title></head>
    <body style="font-family:system-ui;padding:16px;">
      <h1>GigMatch — Realtime Stats</h1>
      <ul>
        <li>Profiles: <b>{stats.get('profiles_total', 0)}</b></li>
        <li>Favorites: <b>{stats.get('favorites_total', 0)}</b></li>
        <li>Matches: <b>{stats.get('matches_total', 0)}</b></li>
        <li>Matches today: <b>{stats.get('matches_today', 0)}</b></li>
        <li>Messages: <b>{stats.get('messages_total', 0)}</b></li>
      </ul>
      <p><a href="/stats">/stats</a> (JSON)</p>
    </body></html>
    """

    @app.get("/stats", response_class=JSONResponse)
    async def stats() -> Dict[str, Any]:
        try:
            return await store.stats()
        except StoreError as e:
            log.warning("stats unavailable: %s", e)
            return JSONResponse({"error": "store unavailable"}, status_code=503)

    @app.get("/healthz")
    async def healthz() -> Dict[str, bool]:
        return {"ok": True}

    return app


async def start_stats_server(store: Any, host: str = "127.0.0.1", port: int = 8000) -> None:
    config = uvicorn.Config(create_app(store), host=host, port=port, loop="asyncio", log_level="info")
    server = uvicorn.Server(config)
    await server.serve()


async def _main() -> None:
    import config
    from gigmatch.database import open_store
    from gigmatch.retry import RetryingStore

    store = RetryingStore(await open_store(), config.retry_policy())
    try:
        log.info("Stats UI on http://%s:%s/", config.STATS_HOST, config.STATS_PORT)
        await start_stats_server(store, config.STATS_HOST, config.STATS_PORT)
    finally:
        await store.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    asyncio.run(_main())


if __name__ == "__main__":
    main()
