"""
Unit tests for the administrative CLI.
"""

import json
from unittest.mock import patch

import pytest

from api import cli
from api.config import Settings


def _write_history(fake_redis, key, data_times):
    raw = [
        {
            "index": i,
            "timestamp": f"2026-01-21T0{i}:00:00+00:00",
            "dataPoints": 2,
            "runName": "20260120_18Z",
            "dataTime": data_time,
            "forecastOffset": 3,
            "runAge": 6,
        }
        for i, data_time in enumerate(data_times)
    ]
    fake_redis.store[f"{key}:indices"] = json.dumps(raw)
    for i in range(len(data_times)):
        fake_redis.store[f"{key}:{i}"] = "{}"


class TestCleanupDuplicates:

    @pytest.mark.anyio
    async def test_counts_per_key(self, cache_store, fake_redis, capsys):
        _write_history(fake_redis, "wind:points", [
            "2026-01-20T12:00:00+00:00",
            "2026-01-20T12:30:00+00:00",
            "2026-01-20T18:00:00+00:00",
        ])
        fake_redis.store["wind:png:0"] = "cG5n"

        removed = await cli.cleanup_duplicates(cache_store, cli.INDEXED_KEYS)

        assert removed == {"wind:points": 1, "precipitation:points": 0}
        assert "wind:png:0" not in fake_redis.store
        assert "removed 1 duplicate(s)" in capsys.readouterr().out


class TestListIndices:

    @pytest.mark.anyio
    async def test_empty(self, cache_store, capsys):
        assert await cli.list_indices(cache_store, "wind:points") == []
        assert "No indices found for wind:points" in capsys.readouterr().out

    @pytest.mark.anyio
    async def test_table(self, cache_store, fake_redis, capsys):
        _write_history(fake_redis, "precipitation:points", [
            "2026-01-20T12:00:00+00:00",
            "2026-01-20T18:00:00+00:00",
        ])

        rows = await cli.list_indices(cache_store, "precipitation:points")

        assert [r["index"] for r in rows] == [1, 0]
        out = capsys.readouterr().out
        assert "HISTORY: precipitation:points" in out
        assert "f+3" in out
        assert "Total: 2 entries" in out


class TestRunFetch:

    @pytest.mark.anyio
    async def test_latest_cycle_closes_resources(self, cache_store, fake_redis, stub_provider):
        cfg = Settings(scheduler_fetch_delay_seconds=0, cache_connect_attempts=1)

        with patch("api.cli._open_store", return_value=cache_store), \
                patch("api.cli.GFSOpenDAPProvider", return_value=stub_provider):
            assert await cli.run_fetch(cfg, latest_only=True) is True

        assert stub_provider.wind_calls == [(0, 0)]
        assert stub_provider.closed
        assert fake_redis.closed


class TestMain:

    def test_no_command_prints_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 1
        assert "cleanup-duplicates" in capsys.readouterr().out

    def test_unknown_key_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["list-indices", "--key", "wind:png"])
        assert exc_info.value.code == 2
