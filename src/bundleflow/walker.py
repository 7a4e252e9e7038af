"""Object graph walker.

Starting from a bundle's root objects, follows every object reference field
to find everything the bundle transitively reaches. The object graph is
cyclic (scripts, prefabs and shared assets refer back to each other), so
every object is registered in the bundle's visited set before its fields are
followed, keyed by identity rather than equality.

Two relationships are invisible to the generic field walk and are added
explicitly:

- GameObject -> components (including those of child GameObjects)
- Animator -> animation clips of its plain controller. Override controllers
  are not followed.

Once the walk of a bundle finishes, every visited object is attributed to the
bundle and all introspection handles are disposed.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, Iterator

from bundleflow.registry import AssetRecord, BundleRecord, BundleRegistry
from bundleflow.runtime import AssetRuntime, InspectorMode, ObjectKind

logger = logging.getLogger(__name__)


class Attributor:
    """Assigns walked objects to the bundle that owns them.

    An object reached from bundle ``b`` is owned by ``b`` unless the runtime
    reports it lives in another bundle, in which case it is recorded as a
    cross-bundle reference from ``b`` to the owner.
    """

    def __init__(self, registry: BundleRegistry, runtime: AssetRuntime, exporter=None):
        self.registry = registry
        self.runtime = runtime
        self.exporter = exporter
        self._lock = threading.RLock()

    def attribute(self, bundle: BundleRecord, obj: Any, handle: Any = None) -> AssetRecord:
        identity = self.runtime.identify(obj)
        owner = identity.owner_bundle or bundle.name

        with self._lock:
            asset = self.registry.get_asset(identity.guid)
            if not asset.name:
                asset.name = identity.name
            if not asset.type_name:
                asset.type_name = identity.type_name

            if owner == bundle.name:
                asset.add_bundle(bundle.name)
                bundle.add_asset(identity.guid)
            else:
                asset.add_referrer(bundle.name)
                bundle.external_refs[owner] = bundle.external_refs.get(owner, 0) + 1

        if self.exporter is not None and owner == bundle.name:
            self.exporter.export(bundle, obj, identity)
        return asset


class ObjectGraphWalker:
    """Depth-first, cycle-safe reachability walk over one bundle's objects."""

    def __init__(
        self,
        runtime: AssetRuntime,
        attributor: Attributor | None = None,
        should_stop: Callable[[], bool] | None = None,
    ):
        self.runtime = runtime
        self.attributor = attributor
        self.should_stop = should_stop or (lambda: False)
        self._special_cases: dict[ObjectKind, Callable[[Any], Iterable[Any]]] = {
            ObjectKind.GAME_OBJECT: self._component_references,
            ObjectKind.ANIMATOR: self._animator_references,
        }

    def walk(self, bundle: BundleRecord, roots: Iterable[Any]) -> list[Any]:
        """Walk every root of a bundle, then attribute and release.

        Args:
            bundle: Bundle the roots were loaded from
            roots: Root objects of the loaded bundle

        Returns:
            Every object discovered during the walk
        """
        try:
            for obj in roots:
                if self.should_stop():
                    logger.info("%s: walk stopped", bundle.name)
                    break
                self.visit(bundle, obj)
            discovered = [obj for obj, _ in bundle.obj_dict.values()]
        finally:
            self.complete(bundle)
        logger.debug("%s: %d objects reachable", bundle.name, len(discovered))
        return discovered

    def visit(self, bundle: BundleRecord, obj: Any) -> None:
        """Visit ``obj`` and everything reachable from it not yet visited."""
        stack: list[Iterator[Any]] = []
        self._enter(bundle, obj, stack)
        while stack:
            if self.should_stop():
                return
            try:
                child = next(stack[-1])
            except StopIteration:
                stack.pop()
                continue
            except Exception as e:
                # The object stays registered; only its remaining fields are lost.
                logger.warning("%s: stopped walking an object: %s", bundle.name, e)
                stack.pop()
                continue
            self._enter(bundle, child, stack)

    def complete(self, bundle: BundleRecord) -> None:
        """Attribute every visited object, then dispose handles and reset the visited set."""
        try:
            if self.attributor is not None and not self.should_stop():
                for obj, handle in list(bundle.obj_dict.values()):
                    try:
                        self.attributor.attribute(bundle, obj, handle)
                    except Exception as e:
                        logger.warning("%s: failed to attribute object: %s", bundle.name, e)
        finally:
            bundle.release_objects()

    def _enter(self, bundle: BundleRecord, obj: Any, stack: list[Iterator[Any]]) -> None:
        if obj is None or id(obj) in bundle.obj_dict:
            return

        try:
            handle = self.runtime.introspect(obj, InspectorMode.DEBUG)
        except Exception as e:
            logger.warning("%s: cannot introspect object: %s", bundle.name, e)
            bundle.obj_dict[id(obj)] = (obj, None)
            return

        bundle.obj_dict[id(obj)] = (obj, handle)
        stack.append(self._references(obj, handle))

    def _references(self, obj: Any, handle: Any) -> Iterator[Any]:
        for prop in handle.visible_fields():
            if prop.is_reference and prop.value is not None:
                yield prop.value

        special = self._special_cases.get(self.runtime.classify(obj))
        if special is not None:
            yield from special(obj)

    def _component_references(self, obj: Any) -> Iterator[Any]:
        for component in self.runtime.components_of(obj):
            if component is None:
                continue
            yield component

    def _animator_references(self, obj: Any) -> Iterator[Any]:
        controller = self.runtime.animator_controller_of(obj)
        if controller is None:
            return
        if controller.is_override:
            logger.debug("Skipping clips of override controller %r", controller.controller)
            return
        for clip in controller.clips:
            if clip is not None:
                yield clip
