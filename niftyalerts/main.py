"""NiftyAlerts — application entry point.

Boots the FastAPI internal server and the alert pipeline, and provides
the CLI entry point.
"""

import logging
import sys

from fastapi import FastAPI

from niftyalerts.api.routers import router

app = FastAPI(title="NiftyAlerts Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("niftyalerts")


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments, build the pipeline and run it."""
    import argparse
    import asyncio
    import signal

    from niftyalerts.api.routers import configure_routers
    from niftyalerts.config import load_config
    from niftyalerts.pipeline import AlertPipeline
    from niftyalerts.repos.db import init_db

    parser = argparse.ArgumentParser(description="NIFTY options alert pipeline")
    parser.add_argument("--env-file", help="Path to a .env file (default: ./.env)")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the pipeline without the API server",
    )
    args = parser.parse_args()

    config = load_config(args.env_file)
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db(config.db_path)

    async def _main() -> int:
        pipeline = AlertPipeline(config)
        configure_routers(pipeline)

        def handle_shutdown(signum, frame):
            logger.info("Shutdown signal received — stopping gracefully.")
            pipeline.stop()

        signal.signal(signal.SIGINT, handle_shutdown)

        if args.engine_only:
            return await _run_pipeline_only(pipeline)
        return await _run_with_api(pipeline, config.http_port)

    sys.exit(asyncio.run(_main()))


async def _run_with_api(pipeline, port: int) -> int:
    """Run the API server and the pipeline concurrently."""
    import asyncio
    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_pipeline() -> int:
        try:
            return await pipeline.run()
        finally:
            server.should_exit = True

    async def _run_server() -> None:
        try:
            await server.serve()
        finally:
            pipeline.stop()

    logger.info("Internal API available at http://localhost:%d", port)
    results = await asyncio.gather(_run_pipeline(), _run_server(), return_exceptions=True)
    logger.info("NiftyAlerts stopped. Results: %s", results)
    exit_code = results[0]
    return exit_code if isinstance(exit_code, int) else 1


async def _run_pipeline_only(pipeline) -> int:
    logger.info("Starting NiftyAlerts pipeline (no API)")
    exit_code = await pipeline.run()
    logger.info("NiftyAlerts pipeline stopped with exit code %d", exit_code)
    return exit_code


if __name__ == "__main__":
    _run_cli()
