from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import NoReturn

import uvicorn
from pydantic import ValidationError

from .accounting import AccountingClient
from .api.main import create_app, set_service, set_settings
from .classification import SubnetConfigError, SubnetSet
from .config import LOG_LEVELS, Settings
from .metrics import METRICS
from .service import TrafficService
from .storage import InfluxWriteError, InfluxWriter, RetryingSink

logger = logging.getLogger("acctwatch.main")


# ---------------------------------------------------------------------------
# Periodic status line
# ---------------------------------------------------------------------------

async def status_reporter(
    service: TrafficService,
    shutdown_event: asyncio.Event,
    interval: float = 30.0,
) -> None:
    """Log iteration/record totals every ``interval`` seconds."""
    last_records = 0
    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass
        report = service.report()
        logger.info(
            "Iteration %d: %d records (total %d, avg: %.2f) metrics=%s",
            report.iteration_count,
            report.written_record_count - last_records,
            report.written_record_count,
            report.average_records,
            METRICS.as_dict(),
        )
        last_records = report.written_record_count


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def build_service(cfg: Settings) -> tuple[TrafficService, InfluxWriter]:
    """Wire the collaborators from validated settings."""
    subnets = SubnetSet(cfg.LAN_SUBNETS)
    client = AccountingClient(
        router_host=cfg.ROUTER_HOST,
        url=cfg.accounting_url,
        timeout=cfg.FETCH_TIMEOUT_SECONDS,
    )
    writer = InfluxWriter(
        url=cfg.INFLUX_URL,
        database=cfg.INFLUX_DB,
        router=cfg.ROUTER_HOST,
        username=cfg.INFLUX_USER,
        password=cfg.INFLUX_PASSWORD,
        retention_policy=cfg.INFLUX_RETENTION_POLICY,
        retention_duration=cfg.INFLUX_RETENTION_DURATION,
    )
    sink = RetryingSink(writer.write, max_retries=cfg.MAX_RETRIES)
    service = TrafficService(
        fetcher=client,
        subnets=subnets,
        sink=sink,
        interval=cfg.POLL_INTERVAL_SECONDS,
    )
    return service, writer


async def run(cfg: Settings) -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(_signum, _frame) -> None:
        logger.info("Shutdown signal received")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    service, writer = build_service(cfg)

    try:
        await writer.ensure_database()
    except InfluxWriteError as exc:
        logger.warning("Could not provision database (continuing): %s", exc)

    service.start()

    tasks = [
        asyncio.create_task(
            status_reporter(service, shutdown_event, cfg.STATUS_INTERVAL_SECONDS),
            name="status",
        ),
    ]

    uv_server = None
    if cfg.API_ENABLED:
        set_service(service)
        set_settings(cfg)
        uv_config = uvicorn.Config(
            create_app(),
            host=cfg.API_HOST,
            port=cfg.API_PORT,
            log_level="warning",
            loop="none",
        )
        uv_server = uvicorn.Server(uv_config)
        tasks.append(asyncio.create_task(uv_server.serve(), name="api"))

    logger.info(
        "AcctWatch — feed=%s subnets=%s db=%s/%s interval=%.1fs retries=%d",
        cfg.accounting_url, cfg.LAN_SUBNETS, cfg.INFLUX_URL, cfg.INFLUX_DB,
        cfg.POLL_INTERVAL_SECONDS, cfg.MAX_RETRIES,
    )

    await shutdown_event.wait()

    await service.stop()
    if uv_server is not None:
        uv_server.should_exit = True
    tasks[0].cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Final stats — %s metrics=%s", service.report(), METRICS.as_dict())
    logger.info("AcctWatch stopped cleanly")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="acctwatch",
        description="Poll router IP accounting and store per-address traffic",
    )
    parser.add_argument("--router", "-r",
                        help="Router IP address or host name")
    parser.add_argument("--accounting-url",
                        help="Explicit accounting page URL")
    parser.add_argument("--db-url", "-d",
                        help="Database URL (e.g. http://192.168.1.1:8086)")
    parser.add_argument("--db-user", "-u")
    parser.add_argument("--db-password", "-p")
    parser.add_argument("--db-name")
    parser.add_argument("--subnet", "-n", nargs="+", action="extend", dest="subnets",
                        help="LAN subnets (e.g. 192.168.1.0/24)")
    parser.add_argument("--interval", type=float,
                        help="Seconds between polls")
    parser.add_argument("--max-retries", type=int,
                        help="Write attempts per cycle")
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS)
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """
    Merge CLI flags over environment settings and validate the result.
    Flags left unset fall through to the environment or .env file.

    Raises:
        pydantic.ValidationError: on invalid subnets, interval or retries.
    """
    overrides = {
        "ROUTER_HOST":           args.router,
        "ACCOUNTING_URL":        args.accounting_url,
        "INFLUX_URL":            args.db_url,
        "INFLUX_USER":           args.db_user,
        "INFLUX_PASSWORD":       args.db_password,
        "INFLUX_DB":             args.db_name,
        "POLL_INTERVAL_SECONDS": args.interval,
        "MAX_RETRIES":           args.max_retries,
        "LOG_LEVEL":             args.log_level,
        "LAN_SUBNETS":           args.subnets,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def main(argv: list[str] | None = None) -> NoReturn:
    args = _parse_args(argv)
    try:
        cfg = settings_from_args(args)
        # Validate the wiring before any tick is scheduled
        SubnetSet(cfg.LAN_SUBNETS)
    except (ValidationError, SubnetConfigError) as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, cfg.LOG_LEVEL),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    asyncio.run(run(cfg))
    sys.exit(0)


if __name__ == "__main__":
    main()
