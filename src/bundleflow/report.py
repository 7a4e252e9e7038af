"""Summary of one analysis run, for JSON or text output."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from bundleflow.depgraph import bundle_coupling
from bundleflow.registry import AssetRecord, BundleRecord, BundleRegistry


@dataclass
class AnalysisReport:
    """Bundles, assets and the audit findings derived from them."""

    bundles: list[BundleRecord]
    assets: dict[int, AssetRecord] = field(default_factory=dict)

    @classmethod
    def from_registry(cls, registry: BundleRegistry) -> AnalysisReport:
        return cls(bundles=registry.get_all_bundles(), assets=registry.get_all_assets())

    @property
    def scene_bundles(self) -> list[BundleRecord]:
        return [b for b in self.bundles if b.is_scene]

    @property
    def failed_bundles(self) -> list[BundleRecord]:
        return [b for b in self.bundles if b.load_failed]

    @property
    def orphan_bundles(self) -> list[BundleRecord]:
        """Bundles no other bundle depends on."""
        return [b for b in self.bundles if b.is_orphan]

    @property
    def duplicated_assets(self) -> list[AssetRecord]:
        return sorted(
            (a for a in self.assets.values() if a.is_duplicated),
            key=lambda a: (-len(a.bundles), a.name, a.guid),
        )

    def coupling(self) -> dict[str, tuple[int, int]]:
        return bundle_coupling(self.bundles)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "summary": {
                "bundles": len(self.bundles),
                "scene_bundles": len(self.scene_bundles),
                "failed_bundles": len(self.failed_bundles),
                "assets": len(self.assets),
                "duplicated_assets": len(self.duplicated_assets),
            },
            "bundles": [b.to_dict() for b in self.bundles],
            "duplicated_assets": [a.to_dict() for a in self.duplicated_assets],
            "orphan_bundles": [b.name for b in self.orphan_bundles],
        }
