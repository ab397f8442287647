"""Command line launcher for the matchmaking broker."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from urllib import error, request

from .config import BrokerSettings, load_settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Duelmatch broker")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--check", action="store_true", help="probe /health of a running broker and exit")
    return parser.parse_args(argv)


def apply_overrides(settings: BrokerSettings, args: argparse.Namespace) -> BrokerSettings:
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    return replace(settings, **overrides)


def probe_health(server_url: str, timeout_s: float = 0.5) -> dict | None:
    try:
        with request.urlopen(f"{server_url}/health", timeout=timeout_s) as response:
            if int(response.status) != 200:
                return None
            return json.loads(response.read().decode("utf-8"))
    except (error.URLError, TimeoutError, ValueError):
        return None


def wait_for_server(server_url: str, timeout_s: float = 8.0) -> bool:
    start = time.time()
    while time.time() - start < timeout_s:
        if probe_health(server_url) is not None:
            return True
        time.sleep(0.2)
    return False


def serve(settings: BrokerSettings) -> None:
    import uvicorn

    from .api import create_app
    from .broker import BrokerService

    app = create_app(broker=BrokerService(settings=settings))
    uvicorn.run(app, host=settings.host, port=settings.port)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    settings = apply_overrides(load_settings(), args)

    if args.check:
        health = probe_health(f"http://{settings.host}:{settings.port}")
        if health is None:
            print("Broker not reachable.", file=sys.stderr)
            return 1
        print(f"queueDepth={health['queueDepth']} upSince={health['upSince']}")
        return 0

    serve(settings)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
