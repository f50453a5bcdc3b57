"""
Tests for CandidateEngine cycles: seeding, the round-robin cursor, the call
budget, partial commits and the reference caches.
"""
import asyncio

import pytest

from candidates_ingest.codec import decode_candidates, decode_metadata, encode_metadata
from candidates_ingest.database import CANDIDATES_KEY, FT_METAS_KEY, INDEX_KEY, MemoryStateStore
from candidates_ingest.errors import CodecError, NotSeededError, SeedingError, UpstreamError
from candidates_ingest.models import EngineState, FtMetadata

from conftest import NATIVE_BALANCE, FailingStore, FakeUpstream, seeded_state

ABCD = ["a.near", "b.near", "c.near", "d.near"]


def stored_index(store: MemoryStateStore) -> int:
    return int(store.data[INDEX_KEY])


# =============================================================================
# SEEDING
# =============================================================================

async def test_first_cycle_seeds_every_page(make_engine, credentials):
    universe = [f"nominee-{i:03d}.near" for i in range(120)]
    upstream = FakeUpstream(universe)
    store = MemoryStateStore()
    engine = make_engine(store, upstream)

    report = await engine.run_cycle(credentials)

    assert report.seeded
    assert engine.state is EngineState.READY
    assert upstream.calls_to("/nominations/candidates") == 4  # 0, 50, 100, then the empty page
    stored = decode_candidates(store.data[CANDIDATES_KEY])
    assert list(stored) == universe
    assert report.enriched == universe[:3]
    assert stored_index(store) == 3


async def test_failed_seed_stores_nothing_and_restarts_from_zero(make_engine, credentials):
    universe = [f"nominee-{i:03d}.near" for i in range(120)]
    upstream = FakeUpstream(universe)
    store = MemoryStateStore()
    engine = make_engine(store, upstream)

    upstream.fail("offset=100")
    with pytest.raises(SeedingError):
        await engine.run_cycle(credentials)

    assert store.data == {}
    assert engine.state is EngineState.UNINITIALIZED
    with pytest.raises(NotSeededError):
        await engine.get_candidates()

    upstream.clear_failures()
    upstream.requests.clear()
    report = await engine.run_cycle(credentials)

    assert report.seeded
    assert upstream.calls_to("offset=0") == 1
    assert len(decode_candidates(store.data[CANDIDATES_KEY])) == 120


async def test_empty_universe_is_ready_with_nothing_to_enrich(make_engine, credentials):
    store = MemoryStateStore()
    engine = make_engine(store, FakeUpstream([]))

    report = await engine.run_cycle(credentials)

    assert engine.state is EngineState.READY
    assert report.enriched == []
    assert await engine.get_candidates() == []
    assert stored_index(store) == 0


async def test_seeded_store_is_not_seeded_again(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    engine = make_engine(MemoryStateStore(seeded_state(ABCD)), upstream)

    report = await engine.run_cycle(credentials)

    assert not report.seeded
    assert upstream.calls_to("/nominations/candidates") == 0


async def test_price_sheet_failure_aborts_the_cycle(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    store = MemoryStateStore()
    engine = make_engine(store, upstream)
    upstream.fail("ref-prices.json")

    with pytest.raises(UpstreamError):
        await engine.run_cycle(credentials)

    assert store.data == {}
    assert upstream.calls_to("/nominations/candidates") == 0


async def test_failed_seed_write_leaves_storage_absent(make_engine, credentials):
    store = FailingStore({CANDIDATES_KEY})
    engine = make_engine(store, FakeUpstream(ABCD))

    with pytest.raises(SeedingError):
        await engine.run_cycle(credentials)

    assert engine.state is EngineState.UNINITIALIZED
    assert engine.candidates == {}
    assert CANDIDATES_KEY not in store.data
    assert INDEX_KEY not in store.data


async def test_bad_price_entry_does_not_block_enrichment(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    upstream.prices["junk.near"] = {"price": "N/A"}
    engine = make_engine(MemoryStateStore(seeded_state(ABCD)), upstream)

    report = await engine.run_cycle(credentials)

    assert report.enriched == ["a.near", "b.near", "c.near"]
    (meta,) = await engine.get_ft_metadata()
    assert meta.price == 1.23


# =============================================================================
# CURSOR
# =============================================================================

async def test_cursor_wraps_around(make_engine, credentials):
    store = MemoryStateStore(seeded_state(ABCD, index=3))
    engine = make_engine(store, FakeUpstream(ABCD))

    report = await engine.run_cycle(credentials)

    assert report.enriched == ["d.near", "a.near", "b.near"]
    assert report.index_before == 3
    assert report.index_after == 2
    assert stored_index(store) == 2


async def test_out_of_range_cursor_is_normalized(make_engine, credentials):
    store = MemoryStateStore(seeded_state(ABCD, index=9))
    engine = make_engine(store, FakeUpstream(ABCD))

    report = await engine.run_cycle(credentials)

    assert report.enriched == ["b.near", "c.near", "d.near"]
    assert stored_index(store) == 0


async def test_every_candidate_is_eventually_enriched(make_engine, credentials):
    universe = [f"n{i}.near" for i in range(7)]
    store = MemoryStateStore(seeded_state(universe))
    engine = make_engine(store, FakeUpstream(universe))

    seen = []
    for _ in range(3):
        seen += (await engine.run_cycle(credentials)).enriched

    assert set(seen) == set(universe)
    assert stored_index(store) == 2
    assert all(c.tx_count == 42 for c in await engine.get_candidates())


async def test_failed_step_keeps_cursor_and_commits_partial_fields(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    store = MemoryStateStore(seeded_state(ABCD))
    engine = make_engine(store, upstream)
    upstream.fail("tx-count/b.near")

    report = await engine.run_cycle(credentials)

    assert report.enriched == ["a.near"]
    assert "tx_count" in report.enrichment_error
    assert not report.success
    assert stored_index(store) == 1

    stored = decode_candidates(store.data[CANDIDATES_KEY])
    a, b = stored["a.near"], stored["b.near"]
    assert a.tx_count == 42 and a.eth_addresses is not None
    # steps before tx_count landed, the rest did not
    assert b.voters == ["fan-of-b.near"]
    assert b.amount == "1000"
    assert b.nfts[0].quantity == 2
    assert b.tx_count is None
    assert b.fts is None
    assert b.eth_addresses is None

    # the same candidate is retried first next time
    upstream.clear_failures()
    report = await engine.run_cycle(credentials)
    assert report.enriched == ["b.near", "c.near", "d.near"]


async def test_failing_candidate_blocks_the_cursor(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    store = MemoryStateStore(seeded_state(ABCD))
    engine = make_engine(store, upstream)
    upstream.fail("/bridge/probable-eth-addresses/a.near")

    for _ in range(2):
        report = await engine.run_cycle(credentials)
        assert report.enriched == []
        assert stored_index(store) == 0


# =============================================================================
# CALL BUDGET
# =============================================================================

async def test_budget_stops_new_candidates(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    for nominee in ABCD:
        upstream.balances[nominee] = [
            {"contract": f"token{i}.{nominee}", "amount": "1", "symbol": f"T{i}"}
            for i in range(15)
        ]
    store = MemoryStateStore(seeded_state(ABCD))
    engine = make_engine(store, upstream)

    report = await engine.run_cycle(credentials)

    # price sheet + 2 * (6 steps + 15 metadata lookups); the third never starts
    assert report.enriched == ["a.near", "b.near"]
    assert report.calls_made == 43
    assert stored_index(store) == 2


async def test_retries_do_not_count_against_the_budget(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    engine = make_engine(MemoryStateStore(seeded_state(ABCD)), upstream)
    upstream.rate_limit("tx-count/a.near", times=3)

    report = await engine.run_cycle(credentials)

    assert report.enriched == ["a.near", "b.near", "c.near"]
    # price sheet + 3 * 6 steps + one wrap.near metadata lookup
    assert report.calls_made == 20
    assert upstream.calls_to("tx-count/a.near") == 4


# =============================================================================
# REFERENCE CACHES
# =============================================================================

async def test_ft_metadata_is_fetched_once_per_contract(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    store = MemoryStateStore(seeded_state(ABCD))
    engine = make_engine(store, upstream)

    await engine.run_cycle(credentials)
    await engine.run_cycle(credentials)

    assert upstream.rpc_calls_for("wrap.near") == 1
    ft_metas = decode_metadata(store.data[FT_METAS_KEY], FtMetadata)
    assert list(ft_metas) == ["wrap.near"]
    assert ft_metas["wrap.near"].price == 1.23


async def test_native_balance_is_not_a_fungible_token(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    engine = make_engine(MemoryStateStore(seeded_state(ABCD)), upstream)

    await engine.run_cycle(credentials)

    candidates = {c.nominee: c for c in await engine.get_candidates()}
    assert [ft.contract_id for ft in candidates["a.near"].fts] == ["wrap.near"]
    assert upstream.rpc_calls_for("Near") == 0


async def test_failed_metadata_lookup_is_retried_on_next_sighting(make_engine, credentials):
    upstream = FakeUpstream(["a.near"])
    upstream.balances["a.near"] = [NATIVE_BALANCE, {"contract": "ghost.near", "amount": "1", "symbol": "GST"}]
    engine = make_engine(MemoryStateStore(seeded_state(["a.near"])), upstream)

    report = await engine.run_cycle(credentials)

    # a one-candidate universe is walked max_candidates_per_cycle times
    assert report.enriched == ["a.near"] * 3
    assert upstream.rpc_calls_for("ghost.near") == 3
    assert await engine.get_ft_metadata() == []
    # the holding is still recorded without metadata
    (candidate,) = await engine.get_candidates()
    assert [ft.contract_id for ft in candidate.fts] == ["ghost.near"]


async def test_nft_metadata_is_refreshed_on_sighting(make_engine, credentials):
    engine = make_engine(MemoryStateStore(seeded_state(ABCD)), FakeUpstream(ABCD))

    await engine.run_cycle(credentials)

    (nft_meta,) = await engine.get_nft_metadata()
    assert nft_meta.contract_id == "nft.example.near"
    assert nft_meta.symbol == "EX"


async def test_prices_are_not_backfilled_within_a_process(make_engine, credentials):
    upstream = FakeUpstream(["a.near"])
    upstream.ft_metadata["usdt.near"] = {"name": "Tether USD", "symbol": "USDt", "decimals": 6}
    upstream.balances["a.near"] = [{"contract": "usdt.near", "amount": "10", "symbol": "USDt"}]
    store = MemoryStateStore(seeded_state(["a.near"]))
    engine = make_engine(store, upstream)

    await engine.run_cycle(credentials)
    upstream.prices["usdt.near"] = {"price": "1.0"}
    await engine.run_cycle(credentials)

    assert upstream.calls_to("ref-prices.json") == 1
    (meta,) = await engine.get_ft_metadata()
    assert meta.price is None

    # a fresh process loads the sheet again and prices what it already knows
    restarted = make_engine(store, upstream)
    await restarted.run_cycle(credentials)

    assert upstream.calls_to("ref-prices.json") == 2
    (meta,) = await restarted.get_ft_metadata()
    assert meta.price == 1.0
    assert upstream.rpc_calls_for("usdt.near") == 1


# =============================================================================
# PERSISTENCE AND READS
# =============================================================================

async def test_failed_write_does_not_abort_the_cycle(make_engine, credentials):
    store = FailingStore({FT_METAS_KEY}, seeded_state(ABCD))
    engine = make_engine(store, FakeUpstream(ABCD))

    report = await engine.run_cycle(credentials)

    assert report.enriched == ["a.near", "b.near", "c.near"]
    assert stored_index(store) == 3
    assert FT_METAS_KEY not in store.data
    assert len(await engine.get_ft_metadata()) == 1


async def test_restart_restores_cursor_and_caches(make_engine, credentials):
    upstream = FakeUpstream(ABCD)
    store = MemoryStateStore(seeded_state(ABCD))
    await make_engine(store, upstream).run_cycle(credentials)

    restarted = make_engine(store, upstream)
    status = await restarted.status()

    assert status["state"] == "ready"
    assert status["index"] == 3
    assert status["candidates"] == 4
    assert status["ft_metas"] == 1
    assert status["nft_metas"] == 1
    assert status["prices_loaded"] is False


async def test_reads_before_seeding(make_engine):
    engine = make_engine(MemoryStateStore(), FakeUpstream(ABCD))

    with pytest.raises(NotSeededError):
        await engine.get_candidates()
    assert await engine.get_ft_metadata() == []
    assert await engine.get_nft_metadata() == []


async def test_reads_return_copies(make_engine):
    engine = make_engine(MemoryStateStore(seeded_state(ABCD)), FakeUpstream(ABCD))

    first = await engine.get_candidates()
    first[0].voters = ["intruder.near"]

    assert (await engine.get_candidates())[0].voters is None


async def test_report_summarizes_the_cycle(make_engine, credentials):
    engine = make_engine(MemoryStateStore(seeded_state(ABCD)), FakeUpstream(ABCD))

    report = await engine.run_cycle(credentials)
    data = report.to_dict()

    assert data["enriched"] == ["a.near", "b.near", "c.near"]
    assert data["enrichment_error"] is None
    assert data["success"] is True
    assert data["duration_seconds"] >= 0
    assert {m["source"] for m in data["client_metrics"]} >= {"pikespeak", "near_rpc"}


class YieldingStore(MemoryStateStore):
    """Memory store whose reads suspend, so loads interleave with other work."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.reads: list[str] = []

    async def get(self, key: str):
        self.reads.append(key)
        await asyncio.sleep(0.01)
        return await super().get(key)


async def test_reads_wait_for_the_initial_load(make_engine, credentials):
    state = seeded_state(ABCD, index=2)
    state[FT_METAS_KEY] = encode_metadata({
        "wrap.near": FtMetadata(contract_id="wrap.near", name="Wrapped NEAR", symbol="wNEAR", decimals=24),
    })
    store = YieldingStore(state)
    engine = make_engine(store, FakeUpstream(ABCD))

    candidates, report, ft_metas, status = await asyncio.gather(
        engine.get_candidates(),
        engine.run_cycle(credentials),
        engine.get_ft_metadata(),
        engine.status(),
    )

    assert [c.nominee for c in candidates] == ABCD
    assert [m.contract_id for m in ft_metas] == ["wrap.near"]
    assert status["state"] == "ready"
    assert status["candidates"] == 4
    assert report.index_before == 2
    assert report.enriched == ["c.near", "d.near", "a.near"]
    # storage was read exactly once
    assert store.reads.count(CANDIDATES_KEY) == 1
    assert store.reads.count(INDEX_KEY) == 1


async def test_corrupt_cursor_is_a_codec_error(make_engine):
    store = MemoryStateStore({**seeded_state(ABCD), INDEX_KEY: b"three"})

    with pytest.raises(CodecError):
        await make_engine(store, FakeUpstream(ABCD)).load()
