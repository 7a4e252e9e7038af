"""Asset Bundle Dependency Analyzer.

Reconstructs the bundle dependency graph and the object containment graph of
a directory of built asset bundles, for offline auditing of duplicated
assets, unused assets and bundle coupling.
"""

from importlib.metadata import version

__version__ = version("bundleflow")

from bundleflow.errors import (
    BundleAnalysisError,
    BundleLoadFailure,
    ConfigurationError,
    DiscoveryExhausted,
    ManifestLoadFailure,
)
from bundleflow.runtime import (
    AnimatorControllerInfo,
    AssetRuntime,
    BundleHandle,
    FieldKind,
    InspectorMode,
    IntrospectionHandle,
    ManifestHandle,
    ObjectIdentity,
    ObjectKind,
    SerializedField,
)
from bundleflow.registry import AssetRecord, BundleRecord, BundleRegistry
from bundleflow.depgraph import (
    bundle_coupling,
    compute_reverse_depends,
    transitive_depends,
)
from bundleflow.discovery import (
    discover_bundles,
    discover_from_files,
    discover_from_manifest,
    is_bundle_file,
)
from bundleflow.walker import Attributor, ObjectGraphWalker
from bundleflow.scene import NullSceneAnalyzer, SceneAnalyzer, ThreadedSceneAnalyzer
from bundleflow.analyzer import (
    AnalysisState,
    AnalyzeOptions,
    BundleAnalyzer,
    CompletionSignal,
)
from bundleflow.report import AnalysisReport

__all__ = [
    # Errors
    "BundleAnalysisError",
    "BundleLoadFailure",
    "ConfigurationError",
    "DiscoveryExhausted",
    "ManifestLoadFailure",
    # Runtime capabilities
    "AnimatorControllerInfo",
    "AssetRuntime",
    "BundleHandle",
    "FieldKind",
    "InspectorMode",
    "IntrospectionHandle",
    "ManifestHandle",
    "ObjectIdentity",
    "ObjectKind",
    "SerializedField",
    # Records
    "AssetRecord",
    "BundleRecord",
    "BundleRegistry",
    # Dependency graph
    "bundle_coupling",
    "compute_reverse_depends",
    "transitive_depends",
    # Discovery
    "discover_bundles",
    "discover_from_files",
    "discover_from_manifest",
    "is_bundle_file",
    # Object graph
    "Attributor",
    "ObjectGraphWalker",
    # Scenes
    "NullSceneAnalyzer",
    "SceneAnalyzer",
    "ThreadedSceneAnalyzer",
    # Orchestration
    "AnalysisState",
    "AnalyzeOptions",
    "BundleAnalyzer",
    "CompletionSignal",
    "AnalysisReport",
]
