"""Scene bundle analysis.

Streamed-scene bundles cannot be walked like regular bundles: their objects
only exist once a scene is instantiated. The analyzer hands every scene
bundle to a ``SceneAnalyzer`` and polls ``is_pending()`` until the analyzer
reports it is done.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol, Sequence

from bundleflow.config import SCENE_WORKERS
from bundleflow.errors import BundleLoadFailure
from bundleflow.registry import BundleRecord
from bundleflow.runtime import AssetRuntime
from bundleflow.walker import Attributor, ObjectGraphWalker

logger = logging.getLogger(__name__)


class SceneAnalyzer(Protocol):
    def begin(self, record: BundleRecord, scene_paths: Sequence[str]) -> None: ...

    def is_pending(self) -> bool: ...


class NullSceneAnalyzer:
    """Records scene bundles without analyzing them. Never pending."""

    def __init__(self) -> None:
        self.scenes: list[tuple[str, list[str]]] = []

    def begin(self, record: BundleRecord, scene_paths: Sequence[str]) -> None:
        self.scenes.append((record.name, list(scene_paths)))

    def is_pending(self) -> bool:
        return False


class ThreadedSceneAnalyzer:
    """Walks scene bundles on worker threads.

    Every job reopens its bundle, so no bundle handle is shared with the
    synchronous walk. Each job uses its own walker and visited set;
    attribution goes through the shared ``Attributor``, which serialises
    registry writes. ``shutdown()`` stops running walks at their next step.
    """

    def __init__(self, runtime: AssetRuntime, attributor: Attributor, max_workers: int = SCENE_WORKERS):
        self.runtime = runtime
        self.attributor = attributor
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="scene")
        self._futures: list[Future] = []
        self._stop = threading.Event()

    def begin(self, record: BundleRecord, scene_paths: Sequence[str]) -> None:
        record.scene_paths = list(scene_paths)
        self._futures.append(self._executor.submit(self._analyze_scene, record))

    def is_pending(self) -> bool:
        return any(not f.done() for f in self._futures)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel queued jobs and stop running walks.

        With ``wait`` the call returns only after every worker has released
        its bundle and handles.
        """
        self._stop.set()
        self._executor.shutdown(wait=wait, cancel_futures=True)
        self._futures.clear()

    def _analyze_scene(self, record: BundleRecord) -> int:
        if self._stop.is_set():
            return 0
        try:
            bundle = self.runtime.load_bundle(record.path)
            if bundle is None:
                raise BundleLoadFailure(f"{record.path} ab load failed", record.path)
            try:
                walker = ObjectGraphWalker(self.runtime, self.attributor, should_stop=self._stop.is_set)
                discovered = walker.walk(record, bundle.root_objects())
            finally:
                bundle.release()
        except Exception as e:
            logger.warning("Scene bundle %s not analyzed: %s", record.name, e)
            return 0
        logger.info("Scene bundle %s: %d objects", record.name, len(discovered))
        return len(discovered)
