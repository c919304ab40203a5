"""Tests for src.core.synced_cell — debounced cloud-synced values."""

import asyncio

import pytest

from src.core.synced_cell import CellRegistry, SyncedCell, serialize


def _cell(remote, cache, key="k", default=0, debounce=0.05, **kwargs):
    return SyncedCell(key, default, remote=remote, cache=cache, debounce_seconds=debounce, **kwargs)


class TestSerialize:
    def test_key_order_does_not_matter(self):
        assert serialize({"b": 1, "a": 2}) == serialize({"a": 2, "b": 1})

    def test_compact_and_unicode(self):
        assert serialize({"name": "摸鱼"}) == '{"name":"摸鱼"}'


class TestHydration:
    @pytest.mark.asyncio
    async def test_remote_value_adopted(self, remote, cache):
        remote.data["k"] = 7
        cell = _cell(remote, cache)
        assert cell.is_loading is True
        await cell.ready()

        assert cell.is_loading is False
        assert cell.read() == 7
        assert cell.remote_found is True
        assert cache.load("k", None) == 7
        await cell.sync_now()
        assert remote.puts == []
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_not_found_keeps_default_without_pushing_it(self, remote, cache):
        cell = _cell(remote, cache, default=[])
        await cell.ready()
        await cell.sync_now()

        assert cell.read() == []
        assert cell.remote_found is False
        assert remote.puts == []
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_seeded_from_local_cache(self, remote, cache):
        cache.save("k", 3)
        remote.fail_get = True
        cell = _cell(remote, cache)
        assert cell.read() == 3
        await cell.ready()

        assert cell.read() == 3
        assert cell.remote_found is None
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_direct_write_during_hydration_wins(self, remote, cache):
        remote.data["k"] = "remote"
        remote.get_gate.clear()
        cell = _cell(remote, cache, default="")

        cell.write("local")
        assert cell.read() == "local"
        remote.get_gate.set()
        await cell.ready()

        assert cell.read() == "local"
        await cell.sync_now()
        assert remote.puts_for("k") == ["local"]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_updater_during_hydration_is_rebased(self, remote, cache):
        remote.data["k"] = [1]
        remote.get_gate.clear()
        cell = _cell(remote, cache, default=[])

        cell.write(lambda prev: prev + [9])
        assert cell.read() == [9]
        remote.get_gate.set()
        await cell.ready()

        assert cell.read() == [1, 9]
        await cell.sync_now()
        assert remote.puts_for("k") == [[1, 9]]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_malformed_remote_value_keeps_local(self, remote, cache):
        def decode(raw):
            if not isinstance(raw, int):
                raise ValueError("not an int")
            return raw

        cache.save("k", 4)
        remote.data["k"] = "garbage"
        cell = _cell(remote, cache, decode=decode)
        await cell.ready()

        assert cell.read() == 4
        await cell.aclose()


class TestDebounce:
    @pytest.mark.asyncio
    async def test_burst_coalesces_into_one_put(self, remote, cache):
        cell = _cell(remote, cache, debounce=0.05)
        await cell.ready()

        cell.write(1)
        cell.write(2)
        cell.write(lambda prev: prev + 1)
        assert remote.puts == []
        await asyncio.sleep(0.2)

        assert remote.puts_for("k") == [3]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_sync_now_sends_latest_once(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        for i in range(1, 6):
            cell.write(i)
        await cell.sync_now()

        assert remote.puts_for("k") == [5]
        assert cell.has_unsent_changes is False
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_unchanged_value_is_not_sent(self, remote, cache):
        remote.data["k"] = 5
        cell = _cell(remote, cache, debounce=0.01)
        await cell.ready()

        cell.write(5)
        cell.write(6)
        cell.write(5)
        await asyncio.sleep(0.1)

        assert remote.puts == []
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_write_goes_to_local_cache_synchronously(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        assert cell.write(lambda prev: prev + 2) == 2
        assert cache.load("k", None) == 2
        await cell.aclose()


class TestImmediate:
    @pytest.mark.asyncio
    async def test_bypasses_debounce(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        cell.write(1)
        cell.write(2, immediate=True)
        await asyncio.sleep(0.05)

        assert remote.puts_for("k") == [2]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_sends_even_when_unchanged(self, remote, cache):
        remote.data["k"] = 5
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        cell.write(5, immediate=True)
        await asyncio.sleep(0.05)

        assert remote.puts_for("k") == [5]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_puts_land_in_write_order(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        for i in (1, 2, 3):
            cell.write(i, immediate=True)
        await cell.sync_now()

        assert remote.puts_for("k") == [1, 2, 3]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_immediate_during_hydration_syncs_after_it(self, remote, cache):
        remote.data["k"] = 1
        remote.get_gate.clear()
        cell = _cell(remote, cache, debounce=10)

        cell.write(1, immediate=True)
        remote.get_gate.set()
        await cell.ready()
        await asyncio.sleep(0.05)

        assert remote.puts_for("k") == [1]
        await cell.aclose()


class TestFailureTolerance:
    @pytest.mark.asyncio
    async def test_failed_put_is_retried_by_next_sync(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        remote.fail_put = True
        cell.write(4)
        await cell.sync_now()
        assert remote.puts == []
        assert cell.has_unsent_changes is True
        assert cell.read() == 4

        remote.fail_put = False
        await cell.sync_now()
        assert remote.puts_for("k") == [4]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_write(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        def boom(value):
            raise RuntimeError("subscriber bug")

        cell.subscribe(boom)
        assert cell.write(1) == 1
        await cell.aclose()


class TestSubscribeAndReset:
    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()
        seen = []

        unsubscribe = cell.subscribe(seen.append)
        cell.write(1)
        unsubscribe()
        cell.write(2)

        assert seen == [1]
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_reset_local_is_not_sent(self, remote, cache):
        cell = _cell(remote, cache, default=[], debounce=0.01)
        await cell.ready()

        cell.write([1])
        cell.reset_local([])
        await asyncio.sleep(0.05)
        await cell.sync_now()

        assert cell.read() == []
        assert remote.puts == []
        assert cache.load("k", None) == []
        await cell.aclose()


class TestFlush:
    @pytest.mark.asyncio
    async def test_flush_delivers_unsent_value(self, remote, cache):
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()

        cell.write(5)
        assert cell.flush() is True
        assert remote.keepalive_puts == [("k", 5)]
        assert cell.flush() is False
        await cell.aclose()
        assert remote.puts == []

    @pytest.mark.asyncio
    async def test_flush_skips_when_nothing_changed(self, remote, cache):
        cell = _cell(remote, cache)
        await cell.ready()
        assert cell.flush() is False
        assert remote.keepalive_puts == []
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_flush_before_hydration_without_writes_is_noop(self, remote, cache):
        remote.get_gate.clear()
        cell = _cell(remote, cache)
        assert cell.flush() is False
        await cell.aclose()

    @pytest.mark.asyncio
    async def test_close_during_hydration_does_not_overwrite_remote(self, remote, cache):
        remote.data["k"] = ["precious"]
        remote.get_gate.clear()
        cell = _cell(remote, cache, default=[])
        await asyncio.sleep(0)

        await cell.aclose()

        assert cell.is_loading is True
        assert cell.flush() is False
        assert remote.keepalive_puts == []
        assert remote.data["k"] == ["precious"]

    @pytest.mark.asyncio
    async def test_close_during_hydration_keeps_rebased_writes_local(self, remote, cache):
        remote.data["k"] = ["precious"]
        remote.get_gate.clear()
        cell = _cell(remote, cache, default=[])

        cell.write(lambda prev: prev + ["local"])
        await cell.aclose()

        assert cell.flush() is False
        assert remote.data["k"] == ["precious"]
        assert cache.load("k", None) == ["local"]

    @pytest.mark.asyncio
    async def test_close_during_hydration_flushes_direct_replacement(self, remote, cache):
        remote.data["k"] = ["precious"]
        remote.get_gate.clear()
        cell = _cell(remote, cache, default=[])

        cell.write(["replaced"])
        await cell.aclose()

        assert cell.flush() is True
        assert remote.keepalive_puts == [("k", ["replaced"])]

    @pytest.mark.asyncio
    async def test_failed_flush_reports_false(self, remote, cache):
        remote.keepalive_ok = False
        cell = _cell(remote, cache, debounce=10)
        await cell.ready()
        cell.write(1)
        assert cell.flush() is False
        await cell.aclose()


class TestCellRegistry:
    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self, remote, cache):
        registry = CellRegistry(remote, cache)
        registry.create("k", 0)
        with pytest.raises(ValueError):
            registry.create("k", 1)
        await registry.aclose()

    @pytest.mark.asyncio
    async def test_sync_and_flush_all(self, remote, cache):
        registry = CellRegistry(remote, cache, debounce_seconds=10)
        a = registry.create("a", 0)
        b = registry.create("b", 0)
        await registry.ready()

        a.write(1)
        b.write(2)
        assert registry.flush_all() == 2
        assert sorted(remote.keepalive_puts) == [("a", 1), ("b", 2)]

        a.write(3)
        await registry.sync_all()
        assert remote.puts == [("a", 3)]
        assert registry.get("b") is b
        await registry.aclose()
