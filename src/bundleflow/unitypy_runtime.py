"""UnityPy-backed asset runtime.

Reads built asset bundles offline with UnityPy. Objects are read through
their type trees, where every object reference is a PPtr dict::

    {"m_FileID": 0, "m_PathID": -6271305493815127392}

``m_FileID`` 0 points into the same serialized file, ``n > 0`` into the
``n - 1``-th external file (usually the CAB of another bundle). A path id of
0 is a null reference.

Limitations:
- References into bundles that have not been loaded yet can only be named by
  their CAB file, not by the bundle that contains it.
- Objects without a type tree (stripped builds) cannot be walked.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Iterator

import UnityPy

from bundleflow.depgraph import transitive_depends
from bundleflow.errors import BundleLoadFailure, ManifestLoadFailure
from bundleflow.runtime import (
    AnimatorControllerInfo,
    FieldKind,
    InspectorMode,
    ObjectIdentity,
    ObjectKind,
    SerializedField,
)

logger = logging.getLogger(__name__)

# Internal bookkeeping references only exposed in InspectorMode.DEBUG
HIDDEN_FIELDS = frozenset(
    {
        "m_GameObject",
        "m_Father",
        "m_PrefabInstance",
        "m_PrefabAsset",
        "m_CorrespondingSourceObject",
        "m_PrefabParentObject",
        "m_PrefabInternal",
    }
)

TRANSFORM_TYPES = frozenset({"Transform", "RectTransform"})

KIND_BY_TYPE = {
    "GameObject": ObjectKind.GAME_OBJECT,
    "Animator": ObjectKind.ANIMATOR,
    "MonoBehaviour": ObjectKind.SCRIPT,
}


def is_pptr(value: Any) -> bool:
    """Check whether a type tree node is an object reference."""
    return isinstance(value, dict) and "m_PathID" in value and "m_FileID" in value


def _file_key(name: str) -> str:
    return name.rsplit("/", 1)[-1].lower()


class UnityPyObject:
    """Stable wrapper for one serialized object.

    ``reader`` is None for objects living in a file that is not part of the
    loaded bundle; those can be identified but not walked.
    """

    def __init__(self, file_name: str, path_id: int, reader: Any = None, owner: str | None = None):
        self.file_name = file_name
        self.path_id = path_id
        self.reader = reader
        self.owner = owner

    @property
    def type_name(self) -> str:
        if self.reader is None:
            return ""
        return self.reader.type.name

    def read_tree(self) -> dict[str, Any]:
        if self.reader is None:
            return {}
        return self.reader.read_typetree()

    def __repr__(self) -> str:
        return f"UnityPyObject({self.file_name!r}, {self.path_id}, {self.type_name!r})"


class _BundleContext:
    """Object wrappers and reference resolution for one loaded bundle."""

    def __init__(self, env: Any, cab_owners: dict[str, str]):
        self.env = env
        self.cab_owners = cab_owners
        self.files: dict[str, Any] = {}
        self.objects: dict[tuple[str, int], UnityPyObject] = {}
        for reader in env.objects:
            self.files.setdefault(_file_key(reader.assets_file.name), reader.assets_file)

    def wrap(self, reader: Any) -> UnityPyObject:
        key = (_file_key(reader.assets_file.name), reader.path_id)
        obj = self.objects.get(key)
        if obj is None:
            obj = UnityPyObject(key[0], reader.path_id, reader)
            self.objects[key] = obj
        return obj

    def resolve(self, source: UnityPyObject, pptr: dict[str, Any]) -> UnityPyObject | None:
        path_id = int(pptr.get("m_PathID", 0))
        if path_id == 0:
            return None

        file_id = int(pptr.get("m_FileID", 0))
        if file_id == 0:
            file_key = source.file_name
        else:
            source_file = self.files.get(source.file_name)
            externals = getattr(source_file, "externals", [])
            if file_id - 1 >= len(externals):
                return None
            file_key = _file_key(getattr(externals[file_id - 1], "path", ""))

        key = (file_key, path_id)
        obj = self.objects.get(key)
        if obj is not None:
            return obj

        serialized = self.files.get(file_key)
        reader = serialized.objects.get(path_id) if serialized is not None else None
        if reader is not None:
            return self.wrap(reader)

        obj = UnityPyObject(file_key, path_id, owner=self.cab_owners.get(file_key, file_key))
        self.objects[key] = obj
        return obj

    def clear(self) -> None:
        self.objects.clear()
        self.files.clear()
        self.env = None


class TypetreeHandle:
    """Introspection handle over an object's type tree."""

    def __init__(self, obj: UnityPyObject, context: _BundleContext, mode: InspectorMode):
        self.obj = obj
        self.mode = mode
        self._context = context
        self._disposed = False

    def visible_fields(self) -> Iterator[SerializedField]:
        if self._disposed:
            raise RuntimeError("Introspection handle already disposed")
        if self.obj.reader is None:
            return
        yield from self._iter_fields(self.obj.read_tree(), "", top_level=True)

    def _iter_fields(self, node: Any, path: str, top_level: bool = False) -> Iterator[SerializedField]:
        if is_pptr(node):
            yield SerializedField(path, FieldKind.OBJECT_REFERENCE, self._context.resolve(self.obj, node))
        elif isinstance(node, dict):
            for key, value in node.items():
                if top_level and self.mode is InspectorMode.NORMAL and key in HIDDEN_FIELDS:
                    continue
                yield from self._iter_fields(value, f"{path}.{key}" if path else key)
        elif isinstance(node, (list, tuple)) and any(isinstance(item, (dict, list, tuple)) for item in node):
            # Maps are lists of (key, value) tuples
            for i, item in enumerate(node):
                yield from self._iter_fields(item, f"{path}[{i}]")
        else:
            yield SerializedField(path, FieldKind.VALUE, node)

    def dispose(self) -> None:
        self._disposed = True


class UnityPyManifest:
    """Dependency data of an ``AssetBundleManifest`` object."""

    def __init__(self, names: list[str], direct: dict[str, list[str]]):
        self._names = names
        self._direct = direct

    @classmethod
    def from_typetree(cls, tree: dict[str, Any]) -> UnityPyManifest:
        index_to_name = {int(idx): name for idx, name in tree.get("AssetBundleNames", [])}
        direct: dict[str, list[str]] = {name: [] for name in index_to_name.values()}
        for idx, info in tree.get("AssetBundleInfos", []):
            name = index_to_name.get(int(idx))
            if name is None:
                continue
            deps = [index_to_name.get(int(d)) for d in info.get("AssetBundleDependencies", [])]
            direct[name] = [d for d in deps if d is not None]
        names = [index_to_name[i] for i in sorted(index_to_name)]
        return cls(names, direct)

    def all_bundle_names(self) -> list[str]:
        return list(self._names)

    def direct_dependencies(self, name: str) -> list[str]:
        return list(self._direct.get(name, []))

    def all_dependencies(self, name: str) -> list[str]:
        return transitive_depends(name, self._direct)

    def release(self) -> None:
        self._direct = {}


class UnityPyBundle:
    """A loaded bundle file."""

    def __init__(self, env: Any, context: _BundleContext):
        self._env = env
        self._context = context
        self._bundle_reader = None
        self._bundle_tree: dict[str, Any] = {}
        for reader in env.objects:
            if reader.type.name == "AssetBundle":
                self._bundle_reader = reader
                self._bundle_tree = reader.read_typetree()
                break
        self.is_streamed_scene = bool(self._bundle_tree.get("m_IsStreamedSceneAssetBundle", False))

    def _all_objects(self) -> list[UnityPyObject]:
        return [self._context.wrap(r) for r in self._env.objects if r.type.name != "AssetBundle"]

    def root_objects(self) -> list[UnityPyObject]:
        """Objects listed in the bundle's container, or every object if there is none."""
        if self.is_streamed_scene or self._bundle_reader is None:
            return self._all_objects()

        source = self._context.wrap(self._bundle_reader)
        roots: list[UnityPyObject] = []
        seen: set[int] = set()
        for _, info in self._bundle_tree.get("m_Container", []):
            obj = self._context.resolve(source, info.get("asset", {}))
            if obj is not None and id(obj) not in seen:
                seen.add(id(obj))
                roots.append(obj)
        return roots or self._all_objects()

    def scene_paths(self) -> list[str]:
        paths = [path for path, _ in self._bundle_tree.get("m_SceneHashes", [])]
        if not paths:
            paths = [path for path, _ in self._bundle_tree.get("m_Container", []) if path.endswith(".unity")]
        return paths

    def release(self) -> None:
        self._context.clear()
        self._bundle_tree = {}
        self._bundle_reader = None
        self._env = None


class UnityPyRuntime:
    """``AssetRuntime`` implementation on top of UnityPy.

    Args:
        root: Directory bundle names are relative to. Without it a bundle is
            named by its file name.
    """

    def __init__(self, root: Path | None = None):
        self.root = Path(root) if root is not None else None
        self._cab_owners: dict[str, str] = {}
        self._lock = threading.Lock()
        self._local = threading.local()

    def bundle_name_for(self, path: Path) -> str:
        if self.root is not None:
            try:
                return Path(path).relative_to(self.root).as_posix()
            except ValueError:
                pass
        return Path(path).name

    def load_bundle_manifest(self, path: Path) -> UnityPyManifest | None:
        try:
            env = UnityPy.load(str(path))
            for reader in env.objects:
                if reader.type.name == "AssetBundleManifest":
                    return UnityPyManifest.from_typetree(reader.read_typetree())
        except Exception as e:
            raise ManifestLoadFailure(f"{path} ab load failed: {e}", path) from e
        return None

    def load_bundle(self, path: Path) -> UnityPyBundle:
        try:
            env = UnityPy.load(str(path))
            readers = list(env.objects)
        except Exception as e:
            raise BundleLoadFailure(f"{path} ab load failed: {e}", path) from e
        if not readers:
            raise BundleLoadFailure(f"{path} contains no objects", path)

        bundle_name = self.bundle_name_for(path)
        with self._lock:
            for reader in readers:
                self._cab_owners.setdefault(_file_key(reader.assets_file.name), bundle_name)

        context = _BundleContext(env, self._cab_owners)
        self._local.context = context
        try:
            return UnityPyBundle(env, context)
        except Exception as e:
            raise BundleLoadFailure(f"{path} has no readable AssetBundle object: {e}", path) from e

    def _context(self) -> _BundleContext:
        context = getattr(self._local, "context", None)
        if context is None:
            raise RuntimeError("No bundle loaded on this thread")
        return context

    def introspect(self, obj: UnityPyObject, mode: InspectorMode = InspectorMode.NORMAL) -> TypetreeHandle:
        return TypetreeHandle(obj, self._context(), mode)

    def classify(self, obj: UnityPyObject) -> ObjectKind:
        return KIND_BY_TYPE.get(obj.type_name, ObjectKind.GENERIC)

    def components_of(self, obj: UnityPyObject) -> list[UnityPyObject]:
        """Components of a GameObject and of every child GameObject."""
        context = self._context()
        components: list[UnityPyObject] = []
        pending = [obj]
        seen: set[int] = set()
        while pending:
            game_object = pending.pop()
            if id(game_object) in seen or game_object.reader is None:
                continue
            seen.add(id(game_object))

            for entry in game_object.read_tree().get("m_Component", []):
                # Unity 5.5+ stores {"component": PPtr}, older versions [classID, PPtr]
                pptr = entry.get("component") if isinstance(entry, dict) else entry[-1]
                component = context.resolve(game_object, pptr) if is_pptr(pptr) else None
                if component is None:
                    continue
                components.append(component)
                if component.type_name in TRANSFORM_TYPES:
                    pending.extend(self._child_game_objects(context, component))
        return components

    def _child_game_objects(self, context: _BundleContext, transform: UnityPyObject) -> Iterator[UnityPyObject]:
        for pptr in transform.read_tree().get("m_Children", []):
            child = context.resolve(transform, pptr)
            if child is None or child.reader is None:
                continue
            game_object = context.resolve(child, child.read_tree().get("m_GameObject", {}))
            if game_object is not None:
                yield game_object

    def animator_controller_of(self, obj: UnityPyObject) -> AnimatorControllerInfo | None:
        context = self._context()
        controller = context.resolve(obj, obj.read_tree().get("m_Controller", {}))
        if controller is None:
            return None
        if controller.type_name == "AnimatorOverrideController":
            return AnimatorControllerInfo(controller, is_override=True)

        clips = [context.resolve(controller, pptr) for pptr in controller.read_tree().get("m_AnimationClips", [])]
        return AnimatorControllerInfo(controller, clips=[c for c in clips if c is not None])

    def identify(self, obj: UnityPyObject) -> ObjectIdentity:
        name = ""
        if obj.reader is not None:
            try:
                name = obj.read_tree().get("m_Name", "") or ""
            except Exception as e:
                logger.debug("No name for %r: %s", obj, e)
        return ObjectIdentity(
            guid=obj.path_id,
            name=name,
            type_name=obj.type_name,
            owner_bundle=obj.owner,
        )

    def dump_object(self, obj: UnityPyObject) -> dict[str, Any]:
        return obj.read_tree()
