#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Run catalog ingestion from the command line.

  python scripts/run_ingest.py all [--max-items N] [--reap]
  python scripts/run_ingest.py store <id> [--max-items N] [--reap]
  python scripts/run_ingest.py stores
  python scripts/run_ingest.py reap <id>

Prints a JSON summary on stdout; logs go to stderr.
"""

import sys, json, asyncio, logging, argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx

from settings import CATALOG_TIMEOUT, LOG_LEVEL
from services.errors import IngestError
from services.models import IngestOptions
from services.orchestrator import IngestOrchestrator, build_orchestrator

log = logging.getLogger("run_ingest")


async def execute(args: argparse.Namespace, orchestrator: IngestOrchestrator) -> dict | list:
    options = IngestOptions(max_items=getattr(args, "max_items", None), reap_stale=getattr(args, "reap", False))

    if args.command == "stores":
        stores = await orchestrator.list_stores()
        return [{"id": s.id, "nombre": s.name, "url": s.url} for s in stores]
    if args.command == "store":
        return (await orchestrator.run_for_store(args.store_id, options)).to_dict()
    if args.command == "all":
        return (await orchestrator.run_for_all_stores(options)).to_dict()
    if args.command == "reap":
        return (await orchestrator.reap(args.store_id)).to_dict()
    raise ValueError(f"Unknown command: {args.command}")


async def main(args: argparse.Namespace) -> int:
    async with httpx.AsyncClient(timeout=CATALOG_TIMEOUT) as http:
        orchestrator = build_orchestrator(http)
        try:
            out = await execute(args, orchestrator)
        except IngestError as e:
            log.error("%s failed: %s", args.command, e)
            print(json.dumps({"success": False, "error": str(e)}, ensure_ascii=False))
            return 1
    print(json.dumps(out, ensure_ascii=False, indent=2))
    return 0


# ---------------------------------------------------------------------
# argparse wiring
# ---------------------------------------------------------------------

def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Scrape stores and reconcile records into the sneaker catalog.")
    sub = p.add_subparsers(dest="command", required=True)

    p_all = sub.add_parser("all", help="Run every active store")
    p_store = sub.add_parser("store", help="Run one store")
    p_store.add_argument("store_id", type=int)
    for sp in (p_all, p_store):
        sp.add_argument("--max-items", type=int, default=None, help="Cap scraped records (default SCRAPER_MAX_ITEMS)")
        sp.add_argument("--reap", action="store_true", help="Delete older listings after the run")

    sub.add_parser("stores", help="List active stores")
    p_reap = sub.add_parser("reap", help="Keep only the newest listing per product for a store")
    p_reap.add_argument("store_id", type=int)
    return p


if __name__ == "__main__":
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    parser = build_argparser()
    sys.exit(asyncio.run(main(parser.parse_args())))
