"""
Model Store Tests — snapshot persistence of the online model and fusion weights.
"""

import json

import pytest

from aitrader.config import Settings


@pytest.fixture
def store(tmp_path, settings):
    from aitrader.store import ModelStore
    return ModelStore(tmp_path, settings).load()


def _train(store):
    from aitrader.models import FusionSample, LayerScores
    store.model.update([1.0, 2.0, 3.0], 1.0)
    store.model.update([0.5, -1.0, 0.0], 0.0)
    store.fusion.tune([FusionSample(label=1, predicted=0.4, layers=LayerScores(indicator=0.9))])


# ════════════════════════════════════════════════
#  ROUND TRIP
# ════════════════════════════════════════════════


class TestRoundTrip:

    def test_save_then_load_restores_state(self, tmp_path, settings, store):
        from aitrader.store import ModelStore
        _train(store)
        store.save()
        fresh = ModelStore(tmp_path, settings).load()
        assert fresh.model.state == store.model.state
        assert fresh.fusion.weights.model_dump() == pytest.approx(store.fusion.weights.model_dump())
        assert fresh.model.trained_samples == 2

    def test_snapshot_files_are_versioned(self, tmp_path, store):
        from aitrader.engines.feature_engine import FEATURE_SCHEMA_VERSION
        from aitrader.store import SNAPSHOT_VERSION
        _train(store)
        store.save()
        model = json.loads((tmp_path / "model.json").read_text())
        fusion = json.loads((tmp_path / "fusion.json").read_text())
        assert model["version"] == SNAPSHOT_VERSION
        assert model["feature_schema"] == FEATURE_SCHEMA_VERSION
        assert fusion["version"] == SNAPSHOT_VERSION
        assert not list(tmp_path.glob("*.tmp"))

    def test_components_load_independently(self, tmp_path, settings, store):
        from aitrader.store import ModelStore
        _train(store)
        store.save_fusion()
        fresh = ModelStore(tmp_path, settings).load()
        assert fresh.model.dimension is None
        assert fresh.fusion.weights.model_dump() == pytest.approx(store.fusion.weights.model_dump())


# ════════════════════════════════════════════════
#  FAIL-SOFT LOADING
# ════════════════════════════════════════════════


class TestFailSoft:

    def test_missing_directory_gives_defaults(self, tmp_path, settings):
        from aitrader.store import ModelStore, default_fusion_weights
        store = ModelStore(tmp_path / "nowhere", settings).load()
        assert store.model.dimension is None
        assert store.fusion.weights.model_dump() == pytest.approx(default_fusion_weights(settings).model_dump())

    def test_corrupt_snapshot(self, tmp_path, settings):
        from aitrader.store import ModelStore
        (tmp_path / "model.json").write_text("{not json")
        (tmp_path / "fusion.json").write_text("[]")
        store = ModelStore(tmp_path, settings).load()
        assert store.model.trained_samples == 0
        assert store.fusion.weights.total() == pytest.approx(1.0)

    def test_version_mismatch(self, tmp_path, settings, store):
        from aitrader.store import ModelStore
        _train(store)
        store.save()
        payload = json.loads((tmp_path / "model.json").read_text())
        payload["version"] = 99
        (tmp_path / "model.json").write_text(json.dumps(payload))
        assert ModelStore(tmp_path, settings).load().model.dimension is None

    def test_feature_schema_mismatch(self, tmp_path, settings, store):
        from aitrader.store import ModelStore
        _train(store)
        store.save()
        payload = json.loads((tmp_path / "model.json").read_text())
        payload["feature_schema"] = "v0"
        (tmp_path / "model.json").write_text(json.dumps(payload))
        assert ModelStore(tmp_path, settings).load().model.trained_samples == 0

    def test_invalid_weights(self, tmp_path, settings):
        from aitrader.store import ModelStore, SNAPSHOT_VERSION, default_fusion_weights
        (tmp_path / "fusion.json").write_text(json.dumps({
            "version": SNAPSHOT_VERSION, "weights": {"indicator": "heavy"},
        }))
        store = ModelStore(tmp_path, settings).load()
        assert store.fusion.weights.model_dump() == pytest.approx(default_fusion_weights(settings).model_dump())


# ════════════════════════════════════════════════
#  BOOKKEEPING
# ════════════════════════════════════════════════


class TestBookkeeping:

    def test_in_memory_store_never_writes(self, tmp_path, monkeypatch):
        from aitrader.store import ModelStore
        monkeypatch.chdir(tmp_path)
        store = ModelStore(settings=Settings(store_dir=None)).load()
        _train(store)
        store.save()
        assert list(tmp_path.iterdir()) == []
        assert store.stats()["persistent"] is False

    def test_stats(self, store):
        _train(store)
        store.record_analysis()
        store.record_analysis()
        stats = store.stats()
        assert stats["analyses"] == 2
        assert stats["trained_samples"] == 2
        assert stats["model_dimension"] == 3
        assert stats["persistent"] is True

    def test_reset_persists_fresh_state(self, tmp_path, settings, store):
        from aitrader.store import ModelStore, default_fusion_weights
        _train(store)
        store.record_analysis()
        store.save()
        store.reset()
        assert store.analyses == 0
        fresh = ModelStore(tmp_path, settings).load()
        assert fresh.model.trained_samples == 0
        assert fresh.fusion.weights.model_dump() == pytest.approx(default_fusion_weights(settings).model_dump())

    def test_from_settings(self, tmp_path):
        from aitrader.store import ModelStore
        store = ModelStore.from_settings(Settings(store_dir=str(tmp_path)))
        assert store.directory == tmp_path
