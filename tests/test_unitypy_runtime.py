"""Tests for the UnityPy-backed runtime, using stand-in UnityPy readers."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from bundleflow.errors import BundleLoadFailure, ManifestLoadFailure
from bundleflow.registry import BundleRecord, BundleRegistry
from bundleflow.runtime import FieldKind, InspectorMode, ObjectKind
from bundleflow.unitypy_runtime import UnityPyManifest, UnityPyRuntime, is_pptr
from bundleflow.walker import Attributor, ObjectGraphWalker


def ptr(path_id, file_id=0):
    return {"m_FileID": file_id, "m_PathID": path_id}


class FakeSerializedFile:
    def __init__(self, name, externals=()):
        self.name = name
        self.objects = {}
        self.externals = [SimpleNamespace(path=p) for p in externals]

    def add(self, path_id, type_name, tree):
        reader = SimpleNamespace(
            path_id=path_id,
            type=SimpleNamespace(name=type_name),
            assets_file=self,
            read_typetree=lambda: tree,
        )
        self.objects[path_id] = reader
        return reader


def _env(*files):
    return SimpleNamespace(objects=[r for f in files for r in f.objects.values()])


def _ui_bundle_file():
    f = FakeSerializedFile("CAB-aaa", externals=["archive:/CAB-bbb/CAB-bbb"])
    f.add(
        1,
        "AssetBundle",
        {
            "m_Name": "ui",
            "m_IsStreamedSceneAssetBundle": False,
            "m_Container": [("assets/ui/hud.prefab", {"preloadIndex": 0, "preloadSize": 0, "asset": ptr(10)})],
        },
    )
    f.add(10, "GameObject", {"m_Name": "HUD", "m_Component": [{"component": ptr(11)}, {"component": ptr(12)}]})
    f.add(11, "Transform", {"m_GameObject": ptr(10), "m_Children": [ptr(21)], "m_Father": ptr(0)})
    f.add(12, "Animator", {"m_GameObject": ptr(10), "m_Controller": ptr(30)})
    f.add(20, "GameObject", {"m_Name": "Icon", "m_Component": [{"component": ptr(21)}, {"component": ptr(22)}]})
    f.add(21, "RectTransform", {"m_GameObject": ptr(20), "m_Children": [], "m_Father": ptr(11)})
    f.add(22, "MonoBehaviour", {"m_GameObject": ptr(20), "m_Name": "", "m_Sprite": ptr(500, file_id=1)})
    f.add(30, "AnimatorController", {"m_Name": "HUDController", "m_AnimationClips": [ptr(31)]})
    f.add(31, "AnimationClip", {"m_Name": "Show", "m_SampleRate": 60.0})
    return f


def _shared_bundle_file():
    f = FakeSerializedFile("CAB-bbb")
    f.add(1, "AssetBundle", {"m_Name": "shared", "m_Container": []})
    f.add(500, "Sprite", {"m_Name": "icon"})
    return f


@pytest.fixture
def envs(monkeypatch):
    envs = {"ui": _env(_ui_bundle_file()), "shared": _env(_shared_bundle_file())}
    monkeypatch.setattr("bundleflow.unitypy_runtime.UnityPy.load", lambda path: envs[Path(path).name])
    return envs


@pytest.fixture
def runtime(envs):
    return UnityPyRuntime(root=Path("/build"))


def _by_id(objs):
    return {o.path_id: o for o in objs}


class TestLoadBundle:
    def test_roots_from_container(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))

        assert not bundle.is_streamed_scene
        assert [o.path_id for o in bundle.root_objects()] == [10]

    def test_wrappers_are_stable(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))

        assert bundle.root_objects()[0] is bundle.root_objects()[0]

    def test_scene_bundle(self, runtime, envs):
        f = FakeSerializedFile("BuildPlayer-Main")
        f.add(
            1,
            "AssetBundle",
            {"m_IsStreamedSceneAssetBundle": True, "m_SceneHashes": [("Assets/Scenes/Main.unity", "abc")]},
        )
        f.add(2, "GameObject", {"m_Name": "Camera", "m_Component": []})
        envs["main"] = _env(f)

        bundle = runtime.load_bundle(Path("/build/main"))

        assert bundle.is_streamed_scene
        assert bundle.scene_paths() == ["Assets/Scenes/Main.unity"]
        assert [o.path_id for o in bundle.root_objects()] == [2]

    def test_load_error(self, runtime, monkeypatch):
        def boom(path):
            raise ValueError("not a bundle")

        monkeypatch.setattr("bundleflow.unitypy_runtime.UnityPy.load", boom)

        with pytest.raises(BundleLoadFailure, match="not a bundle"):
            runtime.load_bundle(Path("/build/ui"))

    def test_empty_file(self, runtime, envs):
        envs["empty"] = SimpleNamespace(objects=[])

        with pytest.raises(BundleLoadFailure):
            runtime.load_bundle(Path("/build/empty"))


class TestIntrospection:
    def test_debug_mode_shows_hidden_fields(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))
        hud = bundle.root_objects()[0]
        transform = runtime.components_of(hud)[0]

        normal = {f.path for f in runtime.introspect(transform, InspectorMode.NORMAL).visible_fields()}
        debug = {f.path for f in runtime.introspect(transform, InspectorMode.DEBUG).visible_fields()}

        assert "m_GameObject" not in normal
        assert "m_Father" not in normal
        assert {"m_GameObject", "m_Father", "m_Children[0]"} <= debug

    def test_reference_fields_resolved(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))
        hud = bundle.root_objects()[0]

        fields = list(runtime.introspect(hud, InspectorMode.DEBUG).visible_fields())
        refs = [f for f in fields if f.kind is FieldKind.OBJECT_REFERENCE]

        assert [f.path for f in refs] == ["m_Component[0].component", "m_Component[1].component"]
        assert [f.value.path_id for f in refs] == [11, 12]

    def test_null_reference(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))
        transform = runtime.components_of(bundle.root_objects()[0])[0]

        father = next(
            f for f in runtime.introspect(transform, InspectorMode.DEBUG).visible_fields() if f.path == "m_Father"
        )

        assert father.kind is FieldKind.OBJECT_REFERENCE
        assert father.value is None

    def test_disposed_handle(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))
        handle = runtime.introspect(bundle.root_objects()[0])
        handle.dispose()

        with pytest.raises(RuntimeError):
            list(handle.visible_fields())

    def test_is_pptr(self):
        assert is_pptr(ptr(1))
        assert not is_pptr({"m_PathID": 1})
        assert not is_pptr([0, 1])


class TestHierarchy:
    def test_components_include_children(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))
        hud = bundle.root_objects()[0]

        components = runtime.components_of(hud)

        assert [c.path_id for c in components] == [11, 12, 21, 22]
        assert runtime.classify(hud) is ObjectKind.GAME_OBJECT
        assert runtime.classify(components[1]) is ObjectKind.ANIMATOR
        assert runtime.classify(components[3]) is ObjectKind.SCRIPT
        assert runtime.classify(components[0]) is ObjectKind.GENERIC

    def test_animator_controller_clips(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))
        anim = runtime.components_of(bundle.root_objects()[0])[1]

        info = runtime.animator_controller_of(anim)

        assert not info.is_override
        assert info.controller.path_id == 30
        assert [c.path_id for c in info.clips] == [31]

    def test_override_controller(self, runtime, envs):
        f = FakeSerializedFile("CAB-ccc")
        f.add(1, "AssetBundle", {"m_Container": []})
        f.add(2, "Animator", {"m_Controller": ptr(3)})
        f.add(3, "AnimatorOverrideController", {"m_Controller": ptr(4), "m_Clips": []})
        f.add(4, "AnimatorController", {"m_AnimationClips": [ptr(5)]})
        f.add(5, "AnimationClip", {"m_Name": "Idle"})
        envs["npc"] = _env(f)
        runtime.load_bundle(Path("/build/npc"))
        anim = runtime._context().wrap(f.objects[2])

        info = runtime.animator_controller_of(anim)

        assert info.is_override
        assert info.clips == []


class TestIdentity:
    def test_identify_local_object(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))

        identity = runtime.identify(bundle.root_objects()[0])

        assert identity.guid == 10
        assert identity.name == "HUD"
        assert identity.type_name == "GameObject"
        assert identity.owner_bundle is None

    def test_external_owner_unknown_bundle(self, runtime):
        bundle = runtime.load_bundle(Path("/build/ui"))
        image = runtime.components_of(bundle.root_objects()[0])[3]

        sprite = next(
            f.value for f in runtime.introspect(image, InspectorMode.DEBUG).visible_fields() if f.path == "m_Sprite"
        )

        assert sprite.reader is None
        assert runtime.identify(sprite).owner_bundle == "cab-bbb"

    def test_external_owner_known_bundle(self, runtime):
        runtime.load_bundle(Path("/build/shared")).release()
        bundle = runtime.load_bundle(Path("/build/ui"))
        image = runtime.components_of(bundle.root_objects()[0])[3]

        sprite = next(
            f.value for f in runtime.introspect(image, InspectorMode.DEBUG).visible_fields() if f.path == "m_Sprite"
        )

        assert runtime.identify(sprite).owner_bundle == "shared"
        assert runtime.identify(sprite).guid == 500


class TestWalk:
    def test_walk_ui_bundle(self, runtime):
        runtime.load_bundle(Path("/build/shared")).release()
        registry = BundleRegistry()
        record = BundleRecord(name="ui", path=Path("/build/ui"), root_path=Path("/build"))
        registry.add_bundle(record)
        walker = ObjectGraphWalker(runtime, Attributor(registry, runtime))
        bundle = runtime.load_bundle(record.path)

        try:
            discovered = walker.walk(record, bundle.root_objects())
        finally:
            bundle.release()

        assert set(_by_id(discovered)) == {10, 11, 12, 20, 21, 22, 30, 31, 500}
        assert set(record.assets) == {10, 11, 12, 20, 21, 22, 30, 31}
        assert record.external_refs == {"shared": 1}
        assert registry.get_asset(500).referenced_by == ["ui"]
        assert registry.get_asset(31).name == "Show"


    def test_material_textures_in_map(self, runtime, envs):
        f = FakeSerializedFile("CAB-ddd")
        f.add(1, "AssetBundle", {"m_Container": [("assets/mat.mat", {"asset": ptr(10)})]})
        f.add(
            10,
            "Material",
            {
                "m_Name": "mat",
                "m_SavedProperties": {
                    "m_TexEnvs": [
                        ("_MainTex", {"m_Texture": ptr(20), "m_Scale": {"x": 1.0, "y": 1.0}}),
                        ("_BumpMap", {"m_Texture": ptr(0), "m_Scale": {"x": 1.0, "y": 1.0}}),
                    ],
                    "m_Floats": [("_Glossiness", 0.5)],
                },
            },
        )
        f.add(20, "Texture2D", {"m_Name": "albedo", "m_Width": 4})
        envs["materials"] = _env(f)
        record = BundleRecord(name="materials", path=Path("/build/materials"), root_path=Path("/build"))
        bundle = runtime.load_bundle(record.path)

        try:
            discovered = ObjectGraphWalker(runtime).walk(record, bundle.root_objects())
        finally:
            bundle.release()

        assert set(_by_id(discovered)) == {10, 20}

    def test_scalar_lists_stay_single_values(self, runtime, envs):
        f = FakeSerializedFile("CAB-eee")
        f.add(1, "AssetBundle", {"m_Container": []})
        f.add(2, "Mesh", {"m_Name": "quad", "m_IndexBuffer": [0, 1, 2, 2, 3, 0]})
        envs["meshes"] = _env(f)
        runtime.load_bundle(Path("/build/meshes"))
        mesh = runtime._context().wrap(f.objects[2])

        fields = {field.path: field for field in runtime.introspect(mesh, InspectorMode.DEBUG).visible_fields()}

        assert fields["m_IndexBuffer"].value == [0, 1, 2, 2, 3, 0]


class TestManifest:
    TREE = {
        "AssetBundleNames": [(0, "a"), (1, "b"), (2, "c")],
        "AssetBundleInfos": [
            (0, {"AssetBundleHash": {}, "AssetBundleDependencies": []}),
            (1, {"AssetBundleHash": {}, "AssetBundleDependencies": [0]}),
            (2, {"AssetBundleHash": {}, "AssetBundleDependencies": [1]}),
        ],
    }

    def test_from_typetree(self):
        manifest = UnityPyManifest.from_typetree(self.TREE)

        assert manifest.all_bundle_names() == ["a", "b", "c"]
        assert manifest.direct_dependencies("c") == ["b"]
        assert manifest.all_dependencies("c") == ["b", "a"]
        assert manifest.all_dependencies("a") == []

    def test_load_manifest(self, runtime, envs):
        f = FakeSerializedFile("CAB-manifest")
        f.add(1, "AssetBundle", {"m_Container": []})
        f.add(2, "AssetBundleManifest", self.TREE)
        envs["Android"] = _env(f)

        manifest = runtime.load_bundle_manifest(Path("/build/Android"))

        assert manifest.all_bundle_names() == ["a", "b", "c"]

    def test_not_a_manifest(self, runtime):
        assert runtime.load_bundle_manifest(Path("/build/shared")) is None

    def test_manifest_load_error(self, runtime, monkeypatch):
        def boom(path):
            raise OSError("unreadable")

        monkeypatch.setattr("bundleflow.unitypy_runtime.UnityPy.load", boom)

        with pytest.raises(ManifestLoadFailure):
            runtime.load_bundle_manifest(Path("/build/Android"))
