"""Tests for the tools that read the persisted snapshot."""

import asyncio

import pytest

from gscore_mcp.resources.snapshot_resource import ResourceNotFoundError, read_latest_resource
from gscore_mcp.scoring.config import ConfigProvider
from gscore_mcp.tools import (
    audit_latest,
    get_config,
    get_history,
    get_latest,
    get_runtime,
    refresh_gscore,
    set_runtime,
    what_if_score,
)


@pytest.fixture
def runtime(make_runtime, fresh_results, adjustments):
    """Runtime with one successful refresh already persisted."""
    rt = make_runtime(fresh_results)
    asyncio.run(refresh_gscore(runtime=rt))
    return rt


@pytest.fixture
def empty_runtime(make_runtime, fresh_results):
    return make_runtime(fresh_results)


class TestNotFound:
    """Read tools never compute; without a snapshot they report not_found."""

    @pytest.mark.parametrize("tool", [get_latest, what_if_score, audit_latest])
    def test_no_snapshot(self, empty_runtime, tool) -> None:
        result = asyncio.run(tool(runtime=empty_runtime))
        assert result["ok"] is False
        assert result["error_type"] == "not_found"

    def test_resource_missing(self, store) -> None:
        with pytest.raises(ResourceNotFoundError, match="gscore://latest"):
            read_latest_resource(store)


class TestGetLatest:
    def test_adds_ages(self, runtime) -> None:
        result = asyncio.run(get_latest(runtime=runtime))

        assert result["ok"] is True
        assert result["composite_score"] == 55.0
        assert 0 <= result["snapshot_age_hours"] < 1
        for factor in result["factors"]:
            assert 0.9 <= factor["age_hours"] <= 1.1
        assert result["meta"]["tool"] == "get_latest"

    def test_resource_serves_same_snapshot(self, runtime) -> None:
        text, mime = read_latest_resource(runtime.store)
        assert mime == "application/json"
        assert '"composite_score": 55.0' in text


class TestGetHistory:
    """Tests for get_history."""

    def test_invalid_range(self, runtime) -> None:
        result = asyncio.run(get_history("2w", runtime=runtime))
        assert result["error_type"] == "invalid_range"

    def test_single_row(self, runtime) -> None:
        result = asyncio.run(get_history("30d", runtime=runtime))

        assert result["ok"] is True
        assert result["count"] == 1
        assert result["points"][0]["composite"] == 55.0
        assert result["points"][0]["trend_valuation"] == 70
        assert result["deltas"]["trend_valuation"]["basis"] == "insufficient_history"

    def test_without_deltas(self, runtime) -> None:
        result = asyncio.run(get_history(include_deltas=False, runtime=runtime))
        assert "deltas" not in result

    def test_deltas_against_previous_day(self, runtime) -> None:
        runtime.store.history_path.write_text(
            '{"as_of_utc":"2000-01-01T00:00:00Z","composite":50.0,"trend_valuation":60}\n'
            + runtime.store.history_path.read_text()
        )
        result = asyncio.run(get_history(runtime=runtime))

        assert result["count"] == 2
        delta = result["deltas"]["trend_valuation"]
        assert delta["delta"] == 10.0
        assert delta["previous_score"] == 60.0


class TestWhatIf:
    """Tests for what_if_score."""

    def test_official_preset(self, runtime) -> None:
        result = asyncio.run(what_if_score(runtime=runtime))

        assert result["official"]["score"] == 55.0
        assert result["alternative"]["score"] == 55.9
        assert result["difference"] == 0.9
        assert {p["key"] for p in result["presets"]} == {"official_30_30", "liq_35_25", "mom_25_35"}

    def test_preset_and_custom(self, runtime) -> None:
        assert asyncio.run(what_if_score("liq_35_25", runtime=runtime))["alternative"]["score"] == 55.0
        custom = asyncio.run(what_if_score(pillar_weights={"social": 1.0}, runtime=runtime))
        assert custom["alternative"]["preset"] == "custom"
        assert custom["alternative"]["score"] == 65.0

    def test_unknown_preset(self, runtime) -> None:
        result = asyncio.run(what_if_score("yolo", runtime=runtime))
        assert result["error_type"] == "invalid_request"
        assert "official_30_30" in result["presets"]


class TestAuditLatest:
    """Tests for audit_latest."""

    def test_valid(self, runtime) -> None:
        result = asyncio.run(audit_latest(runtime=runtime))

        assert result["valid"] is True
        assert result["composite"]["delta"] <= 0.5
        assert result["band_matches"] is True
        assert result["weights"]["total_weight"] == pytest.approx(1.0)
        assert result["config_digest"]["matches"] is True

    def test_tampered_score(self, runtime) -> None:
        snapshot = runtime.store.read_latest()
        snapshot["composite_score"] = 65.0
        runtime.store.write_latest(snapshot)

        result = asyncio.run(audit_latest(runtime=runtime))
        assert result["valid"] is False
        assert result["composite"]["expected"] == pytest.approx(55.0, abs=0.5)

    def test_config_changed_since_snapshot(self, runtime) -> None:
        runtime.provider = ConfigProvider(strict=True, overrides={"spike_detector": {"activation_z": 2.5}}, env={})
        result = asyncio.run(audit_latest(runtime=runtime))

        assert result["valid"] is True
        assert result["config_digest"]["matches"] is False


class TestGetConfig:
    def test_active_config(self, runtime) -> None:
        result = asyncio.run(get_config(runtime=runtime))

        assert result["ok"] is True
        assert result["strict"] is True
        assert result["config_digest"] == runtime.provider.get_config_digest()
        assert {f["key"] for f in result["config"]["factors"]} >= {"trend_valuation", "onchain"}

    def test_invalid_config(self, empty_runtime) -> None:
        empty_runtime.provider = ConfigProvider(
            strict=True, overrides={"factors": {"stablecoins": {"weight": -5}}}, env={}
        )
        result = asyncio.run(get_config(runtime=empty_runtime))
        assert result["error_type"] == "config_invalid"
        assert any("negative weight" in e for e in result["errors"])


class TestRuntime:
    """Tests for the shared runtime."""

    def test_set_and_reset(self, empty_runtime) -> None:
        set_runtime(empty_runtime)
        try:
            assert get_runtime() is empty_runtime
        finally:
            set_runtime(None)

    def test_from_env(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
        monkeypatch.setenv("GSCORE_DATA_DIR", str(tmp_path / "data"))
        monkeypatch.setenv("FACTOR_FEED_DIR", str(tmp_path / "feeds"))
        monkeypatch.setenv("REFRESH_TOKEN", "s3cret")
        monkeypatch.setenv("HISTORY_MIN_HOURS", "12")

        set_runtime(None)
        try:
            runtime = get_runtime()
            assert get_runtime() is runtime
            assert runtime.refresh_token == "s3cret"
            assert runtime.history_min_hours == 12.0
            assert runtime.store.data_dir == tmp_path / "data"
            assert [s.key for s in runtime.sources(runtime.provider.get_config())][0] == "trend_valuation"
            runtime.throttle.cache.close()
            runtime.candle_cache.cache.close()
        finally:
            set_runtime(None)
