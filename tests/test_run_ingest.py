"""Command line entry point."""

import asyncio

import pytest

from fake_catalog import StaticSource, raw_record
from scripts.run_ingest import build_argparser, execute


@pytest.mark.parametrize("argv, command, store_id, max_items", [
    (["all"], "all", None, None),
    (["all", "--max-items", "20"], "all", None, 20),
    (["store", "3", "--max-items", "5"], "store", 3, 5),
    (["reap", "7"], "reap", 7, None),
    (["stores"], "stores", None, None),
])
def test_argparser(argv, command, store_id, max_items):
    args = build_argparser().parse_args(argv)
    assert args.command == command
    assert getattr(args, "store_id", None) == store_id
    assert getattr(args, "max_items", None) == max_items


def test_subcommand_required():
    with pytest.raises(SystemExit):
        build_argparser().parse_args([])


def test_store_command(backend, make_orchestrator):
    sid = backend.add_store("Footlocker")
    orch = make_orchestrator({"footlocker": StaticSource([raw_record(sku=f"S-{i}") for i in range(3)])})
    args = build_argparser().parse_args(["store", str(sid), "--max-items", "2"])

    out = asyncio.run(execute(args, orch))
    assert out["total"] == 2
    assert out["succeeded"] == 2


def test_stores_command(backend, make_orchestrator):
    backend.add_store("Footlocker", "https://footlocker.es")
    backend.add_store("Closed", active=False)
    args = build_argparser().parse_args(["stores"])

    out = asyncio.run(execute(args, make_orchestrator()))
    assert [s["nombre"] for s in out] == ["Footlocker"]
