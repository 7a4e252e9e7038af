"""Capabilities the analysis core needs from a host asset runtime.

The core never touches bundle bytes directly. Loading manifests and bundles,
enumerating serialized fields, walking component hierarchies and resolving
animator controllers are all delegated to an ``AssetRuntime``. The package
ships a UnityPy-backed implementation in ``bundleflow.unitypy_runtime``;
tests use in-memory fakes.

Objects handed around by a runtime are opaque to the core. The only
requirement is that the same serialized object is always represented by the
same Python object during one bundle walk, because the walker tracks visits
by identity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Protocol, Sequence


class InspectorMode(Enum):
    """How much of an object an introspection handle exposes."""

    NORMAL = "normal"
    # Also exposes internal bookkeeping references the normal view hides.
    DEBUG = "debug"


class FieldKind(Enum):
    """Kind of a serialized field."""

    VALUE = "value"
    OBJECT_REFERENCE = "object_reference"


class ObjectKind(Enum):
    """Closed set of object variants the walker special-cases."""

    GENERIC = "generic"
    GAME_OBJECT = "game_object"
    ANIMATOR = "animator"
    SCRIPT = "script"


@dataclass
class SerializedField:
    """One visible field of an introspected object."""

    path: str
    kind: FieldKind
    value: Any = None

    @property
    def is_reference(self) -> bool:
        return self.kind is FieldKind.OBJECT_REFERENCE


@dataclass
class AnimatorControllerInfo:
    """Controller bound to an animator at runtime."""

    controller: Any
    is_override: bool = False
    clips: list[Any] = field(default_factory=list)


@dataclass
class ObjectIdentity:
    """Stable identity of a serialized object, used for attribution.

    Attributes:
        guid: 64-bit identifier shared by every copy of the same source asset
        name: Display name of the object (may be empty)
        type_name: Serialized class name, e.g. "Texture2D"
        owner_bundle: Bundle that physically contains the object, or None
            when it lives in the bundle being walked
    """

    guid: int
    name: str = ""
    type_name: str = ""
    owner_bundle: str | None = None


class IntrospectionHandle(Protocol):
    """Field-level view of one object. Must be disposed exactly once."""

    mode: InspectorMode

    def visible_fields(self) -> Iterator[SerializedField]: ...

    def dispose(self) -> None: ...


class ManifestHandle(Protocol):
    def all_bundle_names(self) -> Sequence[str]: ...

    def direct_dependencies(self, name: str) -> Sequence[str]: ...

    def all_dependencies(self, name: str) -> Sequence[str]: ...

    def release(self) -> None: ...


class BundleHandle(Protocol):
    is_streamed_scene: bool

    def root_objects(self) -> Sequence[Any]: ...

    def scene_paths(self) -> Sequence[str]: ...

    def release(self) -> None: ...


class AssetRuntime(Protocol):
    """Host runtime the analysis core is driven through."""

    def load_bundle_manifest(self, path: Path) -> ManifestHandle | None:
        """Load a manifest bundle, or return None if it cannot be loaded."""
        ...

    def load_bundle(self, path: Path) -> BundleHandle | None:
        """Load a bundle, or return None if it cannot be loaded."""
        ...

    def introspect(self, obj: Any, mode: InspectorMode = InspectorMode.NORMAL) -> IntrospectionHandle: ...

    def classify(self, obj: Any) -> ObjectKind: ...

    def components_of(self, obj: Any) -> Sequence[Any]:
        """Components attached to a GameObject and to all of its children."""
        ...

    def animator_controller_of(self, obj: Any) -> AnimatorControllerInfo | None: ...

    def identify(self, obj: Any) -> ObjectIdentity: ...
