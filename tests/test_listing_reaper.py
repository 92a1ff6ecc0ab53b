"""Stale listing cleanup."""

import asyncio

from services.listing_reaper import reap_stale_listings


def _seed(backend):
    sid = backend.add_store("Footlocker")
    other = backend.add_store("JD Sports")
    p1, p2 = backend.add_product("SKU-1"), backend.add_product("SKU-2")
    old = backend.add_listing(p1, sid, scrape_run_id="run-1")
    new = backend.add_listing(p1, sid, scrape_run_id="run-2")
    only = backend.add_listing(p2, sid, scrape_run_id="run-1")
    foreign = backend.add_listing(p1, other, scrape_run_id="run-1")
    backend.add_size(old, "42", True)
    backend.add_size(old, "43", False)
    backend.add_size(new, "42", True)
    return sid, old, new, only, foreign


def test_keeps_newest_per_product(backend, catalog):
    sid, old, new, only, foreign = _seed(backend)

    result = asyncio.run(reap_stale_listings(catalog, sid))

    assert (result.listings_seen, result.listings_kept, result.listings_deleted) == (3, 2, 1)
    assert result.sizes_deleted == 2
    assert result.errors == 0
    assert set(backend.listings) == {new, only, foreign}
    assert backend.sizes_of(new) == {"42": True}
    assert backend.sizes_of(old) == {}


def test_keep_run_id_wins_over_age(backend, catalog):
    sid, old, new, only, foreign = _seed(backend)

    result = asyncio.run(reap_stale_listings(catalog, sid, keep_run_id="run-1"))

    assert result.listings_deleted == 1
    assert set(backend.listings) == {old, only, foreign}


def test_failures_counted_not_raised(backend, catalog):
    sid, old, new, only, foreign = _seed(backend)
    backend.fail("DELETE", f"/zapatillas-tienda/{old}", 500)

    result = asyncio.run(reap_stale_listings(catalog, sid))

    assert result.errors == 1
    assert result.listings_deleted == 0
    assert old in backend.listings


def test_nothing_to_reap(backend, catalog):
    sid = backend.add_store("Footlocker")
    backend.add_listing(backend.add_product("SKU-1"), sid)

    result = asyncio.run(reap_stale_listings(catalog, sid))
    assert result.to_dict() == {
        "store_id": sid,
        "listings_seen": 1,
        "listings_kept": 1,
        "listings_deleted": 0,
        "sizes_deleted": 0,
        "errors": 0,
    }


def test_store_id_returned_as_string(backend, catalog):
    """Some backends serialize tienda_id as a string; those listings are still reaped."""
    sid = backend.add_store("Footlocker")
    p1 = backend.add_product("SKU-1")
    old = backend.add_listing(p1, str(sid), scrape_run_id="run-1")
    new = backend.add_listing(p1, str(sid), scrape_run_id="run-2")
    backend.add_size(old, "42", True)

    result = asyncio.run(reap_stale_listings(catalog, sid))

    assert (result.listings_seen, result.listings_kept, result.listings_deleted) == (2, 1, 1)
    assert result.sizes_deleted == 1
    assert set(backend.listings) == {new}
