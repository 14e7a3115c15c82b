from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from pipeline.io.config import load_app_config
from processes.allocator.adapter import build_allocator
from processes.allocator.types import AllocationError
from processes.api.app import create_app


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m processes.api",
        description="Serve the pack allocation HTTP API",
    )
    p.add_argument("--config", type=Path, help="Config YAML/JSON (default: config/config.yaml)")
    p.add_argument("--config-kv", nargs="*", help="Inline overrides key=value")
    p.add_argument("--host", type=str, help="Bind host (overrides server.host)")
    p.add_argument("--port", type=int, help="Bind port (overrides server.port)")
    p.add_argument("--log-level", default="info", choices=["debug", "info", "warning", "error"])
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        cfg = load_app_config(args.config, args.config_kv)
        allocator = build_allocator(cfg)
    except AllocationError as e:
        print(f"[api] error ({e.code.value}): {e.user_message}", file=sys.stderr)
        return 2

    import uvicorn

    app = create_app(allocator=allocator, cors_origins=cfg.cors_origins)
    uvicorn.run(
        app,
        host=args.host or cfg.server.host,
        port=args.port or cfg.server.port,
        log_level=args.log_level,
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
