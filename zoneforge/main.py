"""ZoneForge — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
replay and serve modes.
"""

import logging

from fastapi import FastAPI

from zoneforge.api.routers import router

app = FastAPI(title="ZoneForge Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("zoneforge")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from zoneforge.api.routers import configure_routers
    from zoneforge.config import load_config
    from zoneforge.engine import ZoneEngine
    from zoneforge.market.provider import DataFrameBarProvider
    from zoneforge.repos.db import init_db
    from zoneforge.repos.signal_repo import SignalRepo
    from zoneforge.repos.zone_repo import ZoneRepo

    parser = argparse.ArgumentParser(description="ZoneForge structural zone scanner")
    parser.add_argument(
        "--mode",
        choices=["replay", "serve"],
        default="replay",
        help="replay: one pass over CSV data; serve: API + polling loop (default: replay)",
    )
    parser.add_argument(
        "--data-dir",
        default="data/bars",
        help="Directory of SYMBOL_TIMEFRAME.csv files",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)
    zone_repo = ZoneRepo(config.db_path)
    signal_repo = SignalRepo(config.db_path)

    provider = DataFrameBarProvider.from_csv_dir(args.data_dir)
    engine = ZoneEngine(
        config,
        provider,
        zone_repo=zone_repo,
        signal_repo=signal_repo,
    )
    configure_routers(engine=engine, signal_repo=signal_repo)

    if args.mode == "replay":
        # Replay is timed by the data, not the wall clock
        now = provider.latest_time()
        if now is None:
            logger.error("No bar data found in %s", args.data_dir)
            return
        result = engine.run_cycle(now)
        for symbol, outcome in result.items():
            logger.info(
                "%s: %s (%d zone(s) updated)",
                symbol, outcome["action"], outcome.get("zones_updated", 0),
            )
        return

    import signal

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        engine.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    asyncio.run(_serve(engine, config.api_port))


async def _serve(engine, port: int) -> None:
    """Start the API server and the polling loop concurrently."""
    import asyncio
    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    logger.info("ZoneForge API available at http://localhost:%d", port)
    results = await asyncio.gather(
        server.serve(),
        engine.run(),
        return_exceptions=True,
    )
    logger.info("ZoneForge stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()
