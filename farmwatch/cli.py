"""
Headless control loop.

Runs sensing, advice and actuator reconciliation without the HTTP API and
logs every session transition.

Usage:
    farmwatch                                   # sim gateways, 30s polling
    farmwatch --sensor-mode http --actuator-mode http --advisor-mode llm
    farmwatch --poll-seconds 5 --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional

from .core.config import Settings
from .core.log import configure_logging
from .services.control_loop import ControlLoop
from .services.observers import LoggingObserver, ObserverHub
from .services.wiring import build_actuators, build_advisor, build_sensor


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Farm fan/light control loop")

    p.add_argument("--sensor-mode", choices=["sim", "http", "rs485"], help="Sensor provider")
    p.add_argument("--actuator-mode", choices=["sim", "http"], help="Actuator provider")
    p.add_argument("--advisor-mode", choices=["sim", "llm"], help="Recommendation provider")

    p.add_argument("--poll-seconds", type=float, help="Seconds between sensor reads")
    p.add_argument("--degraded-after", type=int, help="Consecutive sensor failures before degrading")
    p.add_argument("--log-file", help="Rotating log file ('' disables)")

    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return p


def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {
        "sensor_mode": args.sensor_mode,
        "actuator_mode": args.actuator_mode,
        "advisor_mode": args.advisor_mode,
        "poll_seconds": args.poll_seconds,
        "degraded_after_failures": args.degraded_after,
        "log_file": args.log_file,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


async def run(cfg: Settings) -> None:
    log = logging.getLogger("farmwatch")
    sensor = build_sensor(cfg)
    loop = ControlLoop(
        sensor,
        build_actuators(cfg),
        build_advisor(cfg),
        observer=ObserverHub([LoggingObserver()]),
        config=cfg,
    )

    log.info("Starting control loop")
    log.info("  Providers:  sensor=%s actuator=%s advisor=%s", cfg.sensor_mode, cfg.actuator_mode, cfg.advisor_mode)
    log.info("  Polling:    every %.1fs, degraded after %d failures", cfg.poll_seconds, cfg.degraded_after_failures)
    log.info(
        "  Hysteresis: %.1fC  %.1f%%RH  %.1f%%O2  %.0flux",
        cfg.hysteresis_temperature_c, cfg.hysteresis_humidity_pct,
        cfg.hysteresis_oxygen_pct, cfg.hysteresis_lux,
    )

    await loop.start(cfg)
    try:
        await asyncio.Event().wait()
    finally:
        await loop.stop()
        close = getattr(sensor, "close", None)
        if close is not None:
            close()


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    cfg = settings_from_args(args)
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_file=cfg.log_file)
    try:
        asyncio.run(run(cfg))
    except KeyboardInterrupt:
        logging.getLogger("farmwatch").info("Shutting down")


if __name__ == "__main__":
    main()
