"""HTTP-эндпоинты для оркестратора и Prometheus: /status и /metrics."""
import logging

from aiohttp import web

from voicespend.errors import PersistenceError
from voicespend.repo.repo import Repository
from voicespend.services.metrics import BotMetrics

logger = logging.getLogger(__name__)

REPO_KEY = web.AppKey("repo", Repository)
METRICS_KEY = web.AppKey("metrics", BotMetrics)


async def status(request: web.Request) -> web.Response:
    try:
        await request.app[REPO_KEY].ping()
    except PersistenceError as e:
        logger.error("health check failed: %s", e)
        return web.Response(text="DB error", status=500)
    return web.Response(text="OK")


async def metrics(request: web.Request) -> web.Response:
    payload, content_type = request.app[METRICS_KEY].render()
    # aiohttp не принимает charset внутри content_type
    resp = web.Response(body=payload)
    resp.headers["Content-Type"] = content_type
    return resp


def create_app(repo: Repository, bot_metrics: BotMetrics) -> web.Application:
    app = web.Application()
    app[REPO_KEY] = repo
    app[METRICS_KEY] = bot_metrics
    app.router.add_get("/status", status)
    app.router.add_get("/metrics", metrics)
    return app


async def start_http_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("health server listening on %s:%s", host, port)
    return runner
