"""Bundle discovery.

Three strategies are tried in priority order and the first one that returns a
list (even an empty one) wins:

1. A caller-supplied hook.
2. The build manifest, a bundle named after the output folder itself. This is
   the only strategy that knows the real dependency lists.
3. A recursive scan for files starting with the bundle magic. Lossy: the
   dependency lists of scanned bundles are unknown and left empty.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from bundleflow.config import BUNDLE_MAGIC, BUNDLE_SIGNATURE_LENGTH
from bundleflow.errors import DiscoveryExhausted, ManifestLoadFailure
from bundleflow.registry import BundleRecord
from bundleflow.runtime import AssetRuntime

logger = logging.getLogger(__name__)

CustomDependHook = Callable[[Path], Optional[list[BundleRecord]]]


def read_signature(path: Path, length: int = BUNDLE_SIGNATURE_LENGTH) -> bytes:
    """Read the first ``length`` bytes of a file."""
    with open(path, "rb") as f:
        return f.read(length)


def is_bundle_file(path: Path) -> bool:
    """Check whether a file starts with the asset bundle magic."""
    try:
        return read_signature(path) == BUNDLE_MAGIC
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return False


def manifest_path_for(directory: Path) -> Path:
    """The manifest bundle is named like the folder that contains it.

    Relative paths such as ``.`` are named after the directory they resolve to.
    """
    return directory / directory.resolve().name


def discover_from_manifest(directory: Path, runtime: AssetRuntime) -> list[BundleRecord] | None:
    """Build bundle records from the directory's manifest bundle.

    Returns:
        Records for every declared bundle, or None if the manifest is missing
        or cannot be loaded
    """
    manifest_path = manifest_path_for(directory)
    if not manifest_path.is_file():
        logger.info("No manifest at %s", manifest_path)
        return None

    try:
        manifest = runtime.load_bundle_manifest(manifest_path)
        if manifest is None:
            raise ManifestLoadFailure(f"{manifest_path} failed to load", manifest_path)
    except ManifestLoadFailure as e:
        logger.warning("%s", e)
        return None

    try:
        infos = []
        for name in manifest.all_bundle_names():
            infos.append(
                BundleRecord(
                    name=name,
                    path=directory / name,
                    root_path=directory,
                    direct_depends=list(manifest.direct_dependencies(name)),
                    all_depends=list(manifest.all_dependencies(name)),
                )
            )
        return infos
    finally:
        manifest.release()


def discover_from_files(directory: Path) -> list[BundleRecord] | None:
    """Scan every file under ``directory`` for the bundle magic.

    Scanned bundles are named by their path relative to ``directory`` and get
    empty dependency lists. Returns None if the directory cannot be listed.
    """
    try:
        files = sorted(p for p in directory.rglob("*") if p.is_file())
    except OSError as e:
        logger.warning("Cannot scan %s: %s", directory, e)
        return None

    infos = []
    for file_path in files:
        if not is_bundle_file(file_path):
            continue
        infos.append(
            BundleRecord(
                name=file_path.relative_to(directory).as_posix(),
                path=file_path,
                root_path=directory,
            )
        )
    return infos


def discover_bundles(
    directory: Path,
    runtime: AssetRuntime | None = None,
    custom_depend: CustomDependHook | None = None,
) -> list[BundleRecord]:
    """Discover the bundles of a build output directory.

    Args:
        directory: Build output directory
        runtime: Runtime used to load the manifest; manifest discovery is
            skipped without one
        custom_depend: Optional hook tried before anything else

    Returns:
        Bundle records of the first strategy that produced a list

    Raises:
        DiscoveryExhausted: If no strategy produced a list
    """
    infos = None
    if custom_depend is not None:
        infos = custom_depend(directory)
        if infos is not None:
            logger.info("Custom discovery returned %d bundles", len(infos))
            return infos

    if runtime is not None:
        infos = discover_from_manifest(directory, runtime)
        if infos is not None:
            logger.info("Manifest discovery returned %d bundles", len(infos))
            return infos

    infos = discover_from_files(directory)
    if infos is not None:
        logger.info("File scan found %d bundles (dependencies unknown)", len(infos))
        return infos

    raise DiscoveryExhausted(f"No bundles discovered in {directory}", directory)
