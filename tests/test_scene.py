"""Tests for scene bundle analyzers."""

import threading
import time
from pathlib import Path

from bundleflow.analyzer import AnalysisState, BundleAnalyzer
from bundleflow.registry import BundleRecord, BundleRegistry
from bundleflow.runtime import InspectorMode
from bundleflow.scene import NullSceneAnalyzer, ThreadedSceneAnalyzer
from bundleflow.walker import Attributor

from fakes import FakeBundle, FakeManifest, FakeObject, FakeRuntime, game_object, write_bundle_file


def _record(name):
    return BundleRecord(name=name, path=Path("/build") / name, root_path=Path("/build"), is_scene=True)


class BlockingRuntime(FakeRuntime):
    """Holds the walking thread when it reaches ``block_on`` until ``proceed`` is set."""

    def __init__(self, block_on, **kwargs):
        super().__init__(**kwargs)
        self.block_on = block_on
        self.reached = threading.Event()
        self.proceed = threading.Event()

    def introspect(self, obj, mode=InspectorMode.NORMAL):
        if obj is self.block_on:
            self.reached.set()
            self.proceed.wait(5.0)
        return super().introspect(obj, mode)


def _wait(scenes, timeout=5.0):
    deadline = time.monotonic() + timeout
    while scenes.is_pending() and time.monotonic() < deadline:
        time.sleep(0.01)


class TestNullSceneAnalyzer:
    def test_records_hand_off(self):
        scenes = NullSceneAnalyzer()

        scenes.begin(_record("level"), ["Assets/Level.unity"])

        assert scenes.scenes == [("level", ["Assets/Level.unity"])]
        assert not scenes.is_pending()


class TestThreadedSceneAnalyzer:
    def test_walks_scene_objects(self):
        light = FakeObject("light", "Light")
        root = game_object("Environment", light)
        runtime = FakeRuntime(bundles={"level": FakeBundle([root], is_streamed_scene=True)})
        registry = BundleRegistry()
        record = _record("level")
        registry.add_bundle(record)
        scenes = ThreadedSceneAnalyzer(runtime, Attributor(registry, runtime), max_workers=1)

        scenes.begin(record, ["Assets/Level.unity"])
        _wait(scenes)
        scenes.shutdown()

        assert set(record.assets) == {root.guid, light.guid}
        assert record.scene_paths == ["Assets/Level.unity"]
        assert runtime.bundles["level"].released == 1
        assert all(h.disposed == 1 for h in runtime.handles)

    def test_load_failure_counts_as_done(self):
        runtime = FakeRuntime(bundles={"level": "corrupt"})
        registry = BundleRegistry()
        scenes = ThreadedSceneAnalyzer(runtime, Attributor(registry, runtime), max_workers=1)

        scenes.begin(_record("level"), [])
        _wait(scenes)

        assert not scenes.is_pending()
        assert registry.get_all_assets() == {}
        scenes.shutdown()

    def test_shutdown_stops_running_walk(self):
        chain = [FakeObject(f"node{i}", "MonoBehaviour") for i in range(50)]
        for obj, child in zip(chain, chain[1:]):
            obj.ref(child)
        runtime = BlockingRuntime(chain[5], bundles={"level": FakeBundle([chain[0]], is_streamed_scene=True)})
        registry = BundleRegistry()
        record = _record("level")
        registry.add_bundle(record)
        scenes = ThreadedSceneAnalyzer(runtime, Attributor(registry, runtime), max_workers=1)

        scenes.begin(record, [])
        assert runtime.reached.wait(5.0)
        threading.Timer(0.05, runtime.proceed.set).start()
        scenes.shutdown(wait=True)

        assert not scenes.is_pending()
        assert len(runtime.handles) < len(chain)
        assert all(h.disposed == 1 for h in runtime.handles)
        assert record.obj_dict == {}
        assert runtime.bundles["level"].released == 1

    def test_clear_during_scene_walk(self, tmp_path):
        build_dir = tmp_path / "StandaloneWindows"
        write_bundle_file(build_dir / "StandaloneWindows")
        chain = [FakeObject(f"node{i}", "MonoBehaviour") for i in range(50)]
        for obj, child in zip(chain, chain[1:]):
            obj.ref(child)
        runtime = BlockingRuntime(
            chain[5],
            bundles={"level": FakeBundle([chain[0]], is_streamed_scene=True)},
            manifest=FakeManifest({"level": []}),
        )
        analyzer = BundleAnalyzer(
            runtime,
            scene_analyzer_factory=lambda attributor: ThreadedSceneAnalyzer(runtime, attributor, max_workers=1),
        )

        assert analyzer.analyze(build_dir)
        assert runtime.reached.wait(5.0)
        assert analyzer.state is AnalysisState.WAITING_FOR_SCENES
        threading.Timer(0.05, runtime.proceed.set).start()
        analyzer.clear()

        assert analyzer.state is AnalysisState.IDLE
        assert analyzer.get_all_assets() == {}
        assert all(h.disposed == 1 for h in runtime.handles)

    def test_analyzer_integration(self, tmp_path):
        build_dir = tmp_path / "StandaloneWindows"
        build_dir.mkdir()
        write_bundle_file(build_dir / "StandaloneWindows")
        prop = FakeObject("crate", "Mesh")
        runtime = FakeRuntime(
            bundles={
                "props": FakeBundle([prop]),
                "level": FakeBundle([game_object("Crate", FakeObject("filter", "MeshFilter").ref(prop))], is_streamed_scene=True),
            },
            manifest=FakeManifest({"props": [], "level": ["props"]}),
        )
        analyzer = BundleAnalyzer(
            runtime,
            scene_analyzer_factory=lambda attributor: ThreadedSceneAnalyzer(runtime, attributor, max_workers=1),
        )
        completed = []
        analyzer.on_completed.connect(lambda: completed.append(True))

        assert analyzer.analyze(build_dir)
        assert analyzer.wait(timeout=5.0, interval=0.01)

        assert analyzer.state is AnalysisState.DONE
        assert completed == [True]
        level = analyzer.get_bundle("level")
        assert level.is_scene
        assert len(level.assets) == 3
        assert analyzer.get_asset(prop.guid).bundles == ["props", "level"]
        analyzer.clear()
