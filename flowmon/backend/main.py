from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time
from typing import NoReturn

import uvicorn

from .aggregation import FlowTableError
from .api.main import create_app
from .api.serializers import FlowTableResponse
from .api.ws_manager import FLOWS_CHANNEL
from .config import Settings, settings
from .context import AppContext
from .ingest import IngestWorkerPool, JsonFlowCollector
from .metrics import METRICS
from .pipeline import init_queues

logger = logging.getLogger("flowmon.main")

SNAPSHOT_BROADCAST_ROWS = 100


# ---------------------------------------------------------------------------
# Periodic broadcasters
# ---------------------------------------------------------------------------

async def flows_broadcaster(
    ctx: AppContext,
    shutdown_event: asyncio.Event,
    interval: float = 1.0,
) -> None:
    while not shutdown_event.is_set():
        await asyncio.sleep(interval)
        if ctx.ws.connection_count(FLOWS_CHANNEL) == 0:
            continue
        snap = ctx.store.snapshot(limit=SNAPSHOT_BROADCAST_ROWS)
        payload = FlowTableResponse.from_snapshot(snap).model_dump()
        payload["timestamp"] = time.time()
        await ctx.ws.broadcast(FLOWS_CHANNEL, payload)


async def stats_reporter(
    ctx: AppContext,
    shutdown_event: asyncio.Event,
    interval: float = 30.0,
) -> None:
    while not shutdown_event.is_set():
        await asyncio.sleep(interval)
        logger.info(
            "METRICS ingest=%s store=%s ws=%s",
            METRICS.as_dict(), ctx.store.stats, {**ctx.ws.all_counts(), **ctx.ws.stats},
        )


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

async def run(cfg: Settings) -> int:
    """Run until a shutdown signal or a fatal ingest error; return the exit code."""
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    fatal: list[BaseException] = []

    ctx = AppContext.from_settings(cfg)
    queue = init_queues(ingest_size=cfg.INGEST_QUEUE_SIZE)

    def _signal_handler(_signum, _frame) -> None:
        logger.info("Shutdown signal received")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    # Collector
    collector = JsonFlowCollector(queue, host=cfg.COLLECTOR_HOST, port=cfg.COLLECTOR_PORT)
    await collector.start()

    # Ingest workers
    def _on_fatal(exc: BaseException) -> None:
        fatal.append(exc)
        shutdown_event.set()

    workers = IngestWorkerPool(
        queue, ctx.consumer, workers=cfg.INGEST_WORKERS, on_fatal=_on_fatal,
    )
    workers.start()

    # FastAPI + uvicorn
    app = create_app(ctx)
    uv_config = uvicorn.Config(
        app,
        host=cfg.API_HOST,
        port=cfg.API_PORT,
        log_level="warning",
        loop="none",
    )
    uv_server = uvicorn.Server(uv_config)

    tasks = [
        asyncio.create_task(
            flows_broadcaster(ctx, shutdown_event, cfg.SNAPSHOT_INTERVAL_SECONDS),
            name="flows_ws",
        ),
        asyncio.create_task(stats_reporter(ctx, shutdown_event), name="stats"),
        asyncio.create_task(uv_server.serve(),                     name="api"),
    ]

    logger.info(
        "FlowMon — collector=udp://%s:%d  API=http://%s:%d  workers=%d",
        cfg.COLLECTOR_HOST, cfg.COLLECTOR_PORT, cfg.API_HOST, cfg.API_PORT,
        cfg.INGEST_WORKERS,
    )

    await shutdown_event.wait()

    uv_server.should_exit = True
    collector.stop()
    await workers.stop()
    for t in tasks[:-1]:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Final stats — ingest=%s store=%s", METRICS.as_dict(), ctx.store.stats)
    if fatal:
        logger.critical("FlowMon stopped after a fatal ingest error: %s", fatal[0])
        return 1
    logger.info("FlowMon stopped cleanly")
    return 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="FlowMon flow aggregation monitor")
    parser.add_argument("--mode",     default=settings.TABLE_MODE,
                        choices=["normal", "ovn", "ovn_acl"])
    parser.add_argument("--port",     default=settings.COLLECTOR_PORT, type=int)
    parser.add_argument("--workers",  default=settings.INGEST_WORKERS, type=int)
    parser.add_argument("--sort",     default=settings.DEFAULT_SORT_KEY)
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args()


def main() -> NoReturn:
    args = _parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    cfg = settings.model_copy(update={
        "TABLE_MODE": args.mode,
        "COLLECTOR_PORT": args.port,
        "INGEST_WORKERS": args.workers,
        "DEFAULT_SORT_KEY": args.sort,
    })
    if cfg.INGEST_WORKERS < 1:
        print("ERROR: --workers must be >= 1", file=sys.stderr)
        sys.exit(1)

    try:
        code = asyncio.run(run(cfg))
    except FlowTableError as e:
        print(f"ERROR: invalid flow table configuration: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
