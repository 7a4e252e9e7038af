"""Bundle and asset records collected during one analysis run.

A ``BundleRegistry`` is created fresh for every ``BundleAnalyzer.analyze``
call and torn down by ``clear()``. Nothing in this module is process-wide.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)


@dataclass
class BundleRecord:
    """One discovered bundle.

    Attributes:
        name: Unique bundle name (file name, or relative path for scan discovery)
        path: Absolute path to the bundle file
        root_path: Directory the bundle was discovered in
        direct_depends: Bundles the manifest declares as direct dependencies
        all_depends: Transitive closure of ``direct_depends``
        be_depends: Bundles whose ``all_depends`` contains this bundle (derived)
        is_scene: Whether the bundle is a streamed-scene bundle
        obj_dict: Visited set of the current walk, ``id(obj) -> (obj, handle)``
        assets: GUIDs of objects this bundle owns
        external_refs: Owner bundle name -> number of objects reached in it
        scene_paths: Scene paths of a scene bundle
        load_failed: Whether the bundle could not be opened
    """

    name: str
    path: Path
    root_path: Path
    direct_depends: list[str] = field(default_factory=list)
    all_depends: list[str] = field(default_factory=list)
    be_depends: list[str] = field(default_factory=list)
    is_scene: bool = False
    obj_dict: dict[int, tuple[Any, Any]] = field(default_factory=dict, repr=False)
    assets: list[int] = field(default_factory=list)
    external_refs: dict[str, int] = field(default_factory=dict)
    scene_paths: list[str] = field(default_factory=list)
    load_failed: bool = False

    @property
    def is_orphan(self) -> bool:
        """True when no other bundle depends on this one."""
        return not self.be_depends

    def add_asset(self, guid: int) -> None:
        if guid not in self.assets:
            self.assets.append(guid)

    def release_objects(self) -> int:
        """Dispose every introspection handle still held and empty the visited set."""
        released = 0
        for _, handle in self.obj_dict.values():
            if handle is None:
                continue
            try:
                handle.dispose()
            except Exception as e:
                logger.warning("Failed to dispose handle in %s: %s", self.name, e)
            released += 1
        self.obj_dict.clear()
        return released

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "is_scene": self.is_scene,
            "load_failed": self.load_failed,
            "direct_depends": list(self.direct_depends),
            "all_depends": list(self.all_depends),
            "be_depends": list(self.be_depends),
            "asset_count": len(self.assets),
            "external_refs": dict(sorted(self.external_refs.items())),
            "scene_paths": list(self.scene_paths),
        }


@dataclass
class AssetRecord:
    """One unique object GUID seen during analysis."""

    guid: int
    name: str = ""
    type_name: str = ""
    bundles: list[str] = field(default_factory=list)
    referenced_by: list[str] = field(default_factory=list)

    @property
    def is_duplicated(self) -> bool:
        """True when more than one bundle carries its own copy."""
        return len(self.bundles) > 1

    @property
    def is_unreferenced(self) -> bool:
        """True when no bundle other than the owners reaches it."""
        return not self.referenced_by

    def add_bundle(self, bundle_name: str) -> None:
        if bundle_name not in self.bundles:
            self.bundles.append(bundle_name)

    def add_referrer(self, bundle_name: str) -> None:
        if bundle_name not in self.referenced_by:
            self.referenced_by.append(bundle_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "guid": self.guid,
            "name": self.name,
            "type": self.type_name,
            "bundles": list(self.bundles),
            "referenced_by": list(self.referenced_by),
            "duplicated": self.is_duplicated,
        }


class BundleRegistry:
    """Bundles and assets of a single analysis session."""

    def __init__(self) -> None:
        self._bundles: list[BundleRecord] = []
        self._by_name: dict[str, BundleRecord] = {}
        self._assets: dict[int, AssetRecord] = {}

    def __len__(self) -> int:
        return len(self._bundles)

    def __iter__(self) -> Iterator[BundleRecord]:
        return iter(self._bundles)

    def add_bundle(self, record: BundleRecord) -> None:
        if record.name in self._by_name:
            raise ValueError(f"Duplicate bundle name: {record.name}")
        self._bundles.append(record)
        self._by_name[record.name] = record

    def get_all_bundles(self) -> list[BundleRecord]:
        return list(self._bundles)

    def get_bundle(self, name: str) -> BundleRecord | None:
        return self._by_name.get(name)

    def get_all_assets(self) -> dict[int, AssetRecord]:
        return dict(self._assets)

    def get_asset(self, guid: int) -> AssetRecord:
        """Get the record for a GUID, creating it on first lookup."""
        info = self._assets.get(guid)
        if info is None:
            info = AssetRecord(guid=guid)
            self._assets[guid] = info
        return info

    def find_asset(self, guid: int) -> AssetRecord | None:
        return self._assets.get(guid)

    def duplicated_assets(self) -> list[AssetRecord]:
        return [a for a in self._assets.values() if a.is_duplicated]

    def clear(self) -> None:
        """Release every held handle and drop all bundle and asset state."""
        for record in self._bundles:
            record.release_objects()
        self._bundles.clear()
        self._by_name.clear()
        self._assets.clear()
