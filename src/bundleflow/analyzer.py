"""Analysis orchestration.

``BundleAnalyzer.analyze`` runs one complete pass over a build output
directory::

    IDLE -> DISCOVERING -> BUILDING -> WALKING -> DONE
                                             \\-> WAITING_FOR_SCENES -> DONE

Scene bundles are handed to a ``SceneAnalyzer``; when one is still working
after the synchronous walk, the analyzer waits in ``WAITING_FOR_SCENES``
until ``poll()`` sees it finish. ``on_completed`` fires once per successful
``analyze`` call. ``clear()`` returns to ``IDLE`` from any state.

Example:
    >>> analyzer = BundleAnalyzer(UnityPyRuntime())
    >>> analyzer.on_completed.connect(lambda: print("done"))
    >>> if analyzer.analyze(Path("Build/StandaloneWindows")):
    ...     analyzer.wait()
    ...     for info in analyzer.get_all_bundles():
    ...         print(info.name, info.be_depends)
"""

from __future__ import annotations

import gc
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from bundleflow import config
from bundleflow.depgraph import compute_reverse_depends
from bundleflow.discovery import CustomDependHook, discover_bundles
from bundleflow.errors import BundleLoadFailure, ConfigurationError, DiscoveryExhausted
from bundleflow.export import TypetreeExporter
from bundleflow.registry import AssetRecord, BundleRecord, BundleRegistry
from bundleflow.runtime import AssetRuntime
from bundleflow.scene import NullSceneAnalyzer, SceneAnalyzer
from bundleflow.walker import Attributor, ObjectGraphWalker

logger = logging.getLogger(__name__)

SceneAnalyzerFactory = Callable[[Attributor], SceneAnalyzer]


class AnalysisState(Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    BUILDING = "building"
    WALKING = "walking"
    WAITING_FOR_SCENES = "waiting_for_scenes"
    DONE = "done"


@dataclass
class AnalyzeOptions:
    """Switches for one analyzer.

    Attributes:
        analyze_export: Export every owned object while attributing it
        analyze_only_scene: Skip the object walk of non-scene bundles
        custom_depend: Discovery hook tried before the manifest
        export_dir: Where exported objects are written
    """

    analyze_export: bool = False
    analyze_only_scene: bool = False
    custom_depend: CustomDependHook | None = None
    export_dir: Path | None = None

    @classmethod
    def from_env(cls) -> AnalyzeOptions:
        return cls(
            analyze_export=config.ANALYZE_EXPORT,
            analyze_only_scene=config.ANALYZE_ONLY_SCENE,
            export_dir=Path(config.EXPORT_DIR),
        )


class CompletionSignal:
    """One-shot notification, re-armed at the start of every analysis."""

    def __init__(self) -> None:
        self._callbacks: list[Callable[[], None]] = []
        self._fired = False

    @property
    def fired(self) -> bool:
        return self._fired

    def connect(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def disconnect(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def arm(self) -> None:
        self._fired = False

    def fire(self) -> bool:
        """Notify every callback unless already fired. Returns whether it fired."""
        if self._fired:
            return False
        self._fired = True
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception as e:
                logger.error("Completion callback failed: %s", e)
        return True


class BundleAnalyzer:
    """Discovers bundles, builds their dependency graph and walks their objects."""

    def __init__(
        self,
        runtime: AssetRuntime,
        scene_analyzer_factory: SceneAnalyzerFactory | None = None,
        options: AnalyzeOptions | None = None,
        exporter_factory: Callable[[AnalyzeOptions], object] | None = None,
    ):
        self.runtime = runtime
        self.options = options or AnalyzeOptions()
        self.on_completed = CompletionSignal()
        self.state = AnalysisState.IDLE
        self._scene_analyzer_factory = scene_analyzer_factory or (lambda attributor: NullSceneAnalyzer())
        self._exporter_factory = exporter_factory or self._default_exporter
        self._registry: BundleRegistry | None = None
        self._scene_analyzer: SceneAnalyzer | None = None
        self._scene_count = 0

    def _default_exporter(self, options: AnalyzeOptions) -> TypetreeExporter:
        return TypetreeExporter(options.export_dir or Path(config.EXPORT_DIR), self.runtime)

    @property
    def registry(self) -> BundleRegistry | None:
        return self._registry

    def analyze(self, directory_path: Path | str) -> bool:
        """Analyze a build output directory.

        Args:
            directory_path: Directory containing the built bundles

        Returns:
            False if the directory is missing or no bundles could be
            discovered, True otherwise
        """
        self.clear()
        directory = Path(directory_path)

        self.state = AnalysisState.DISCOVERING
        try:
            if not directory.is_dir():
                raise ConfigurationError(f"{directory} does not exist", directory)
            infos = discover_bundles(directory, self.runtime, self.options.custom_depend)
        except (ConfigurationError, DiscoveryExhausted) as e:
            logger.error("%s", e)
            self.clear()
            return False

        registry = BundleRegistry()
        try:
            for info in infos:
                registry.add_bundle(info)
        except ValueError as e:
            logger.error("Invalid bundle list for %s: %s", directory, e)
            self.clear()
            return False
        self._registry = registry
        self.on_completed.arm()

        self.state = AnalysisState.BUILDING
        compute_reverse_depends(registry.get_all_bundles())

        self.state = AnalysisState.WALKING
        exporter = None
        if self.options.analyze_export:
            exporter = self._exporter_factory(self.options)
        attributor = Attributor(registry, self.runtime, exporter)
        self._scene_analyzer = self._scene_analyzer_factory(attributor)
        self._walk_bundles(registry, ObjectGraphWalker(self.runtime, attributor))

        if self._scene_count and self._scene_analyzer.is_pending():
            self.state = AnalysisState.WAITING_FOR_SCENES
            logger.info("Waiting for %d scene bundles", self._scene_count)
        else:
            self._finish()
        return True

    def _walk_bundles(self, registry: BundleRegistry, walker: ObjectGraphWalker) -> None:
        # Each bundle is loaded, walked and released before the next one is opened.
        for info in registry:
            try:
                bundle = self.runtime.load_bundle(info.path)
                if bundle is None:
                    raise BundleLoadFailure(f"{info.path} ab load failed", info.path)
            except Exception as e:
                logger.warning("Skipping bundle %s: %s", info.name, e)
                info.load_failed = True
                continue

            try:
                if bundle.is_streamed_scene:
                    info.is_scene = True
                    info.scene_paths = list(bundle.scene_paths())
                    self._scene_analyzer.begin(info, info.scene_paths)
                    self._scene_count += 1
                elif not self.options.analyze_only_scene:
                    walker.walk(info, bundle.root_objects())
            except Exception as e:
                logger.warning("Skipping bundle %s: %s", info.name, e)
                info.load_failed = True
            finally:
                bundle.release()

    def poll(self) -> bool:
        """Check on pending scene work. Returns True once the analysis is done."""
        if self.state is AnalysisState.WAITING_FOR_SCENES:
            if self._scene_analyzer is None or not self._scene_analyzer.is_pending():
                self._finish()
        return self.state is AnalysisState.DONE

    def wait(self, timeout: float | None = None, interval: float = config.POLL_INTERVAL) -> bool:
        """Poll until done or until ``timeout`` seconds have passed."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.poll():
            if self.state is not AnalysisState.WAITING_FOR_SCENES:
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(interval)
        return True

    def _finish(self) -> None:
        self.state = AnalysisState.DONE
        self.on_completed.fire()

    def get_all_bundles(self) -> list[BundleRecord]:
        if self._registry is None:
            return []
        return self._registry.get_all_bundles()

    def get_bundle(self, name: str) -> BundleRecord | None:
        if self._registry is None:
            return None
        return self._registry.get_bundle(name)

    def get_all_assets(self) -> dict[int, AssetRecord]:
        if self._registry is None:
            return {}
        return self._registry.get_all_assets()

    def get_asset(self, guid: int) -> AssetRecord:
        if self._registry is None:
            self._registry = BundleRegistry()
        return self._registry.get_asset(guid)

    def clear(self) -> None:
        """Drop every result of the previous run and return to IDLE."""
        # Scene workers write into registry records; stop them first.
        shutdown = getattr(self._scene_analyzer, "shutdown", None)
        if shutdown is not None:
            shutdown(wait=True)
        self._scene_analyzer = None
        if self._registry is not None:
            self._registry.clear()
            self._registry = None
        self._scene_count = 0
        self.state = AnalysisState.IDLE
        gc.collect()
