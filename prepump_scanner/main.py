from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .runner import ScanRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Pre-Pump Scanner - KuCoin Futures daily confluence scan")
    p.add_argument("--config", default=None, help="Path to YAML config (defaults + env when omitted)")
    p.add_argument("--once", action="store_true", help="Run a single scan and exit")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    runner = ScanRunner(cfg)

    async def _run() -> None:
        try:
            if args.once:
                await runner.run_scan()
            else:
                await runner.run_forever()
        finally:
            # Close shared REST session cleanly.
            try:
                await runner.provider.close()
            except Exception as e:
                logging.getLogger("main").debug("provider_close_failed err=%s", e)

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
