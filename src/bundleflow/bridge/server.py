import json
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from bundleflow.depgraph import bundle_coupling, compute_reverse_depends
from bundleflow.discovery import discover_bundles
from bundleflow.errors import DiscoveryExhausted
from bundleflow.report import AnalysisReport
from bundleflow.unitypy_runtime import UnityPyRuntime

mcp = FastMCP(
    "bundleflow-bridge",
    instructions="Asset bundle analysis - dependency graph, object reachability and duplicated assets",
)

DEFAULT_TIMEOUT = 300.0


def _error_text(e):
    return f"Error: {e}"


def _analyze(directory, timeout=DEFAULT_TIMEOUT):
    from bundleflow.cli import create_analyzer

    path = Path(directory)
    analyzer = create_analyzer(path)
    if not analyzer.analyze(path):
        raise DiscoveryExhausted(f"No asset bundles could be analyzed in {directory}", path)
    try:
        analyzer.wait(timeout=timeout)
        return AnalysisReport.from_registry(analyzer.registry)
    finally:
        analyzer.clear()


def _discover(directory):
    path = Path(directory)
    if not path.is_dir():
        raise DiscoveryExhausted(f"{directory} is not a directory", path)
    infos = discover_bundles(path, UnityPyRuntime(root=path))
    compute_reverse_depends(infos)
    return infos


@mcp.tool()
def analyze_bundles(directory: str) -> str:
    """Analyze every asset bundle in a build output directory.

    Args:
        directory: Folder containing the built bundles (and usually its manifest)

    Returns:
        JSON report with per-bundle dependencies, asset counts, duplicated assets and orphan bundles
    """
    try:
        return json.dumps(_analyze(directory).to_dict(), indent=2, ensure_ascii=False)
    except DiscoveryExhausted as e:
        return _error_text(e)


@mcp.tool()
def get_bundle_info(directory: str, bundle_name: str) -> str:
    """Get the dependency data of a single bundle without loading bundle contents.

    Args:
        directory: Folder containing the built bundles
        bundle_name: Bundle name as declared in the manifest

    Returns:
        JSON with direct, transitive and reverse dependencies
    """
    try:
        infos = _discover(directory)
    except DiscoveryExhausted as e:
        return _error_text(e)
    for info in infos:
        if info.name == bundle_name:
            data = {
                "name": info.name,
                "path": str(info.path),
                "direct_depends": info.direct_depends,
                "all_depends": info.all_depends,
                "be_depends": info.be_depends,
            }
            return json.dumps(data, indent=2, ensure_ascii=False)
    return _error_text(f"Bundle not found: {bundle_name}")


@mcp.tool()
def find_duplicate_assets(directory: str) -> str:
    """Find assets that are built into more than one bundle.

    Args:
        directory: Folder containing the built bundles

    Returns:
        JSON array of assets with the bundles carrying a copy of each
    """
    try:
        report = _analyze(directory)
    except DiscoveryExhausted as e:
        return _error_text(e)
    return json.dumps([a.to_dict() for a in report.duplicated_assets], indent=2, ensure_ascii=False)


@mcp.tool()
def get_bundle_coupling(directory: str) -> str:
    """Get fan-out (transitive depends) and fan-in (depended by) counts per bundle.

    Args:
        directory: Folder containing the built bundles

    Returns:
        JSON object mapping bundle name to {"depends": n, "depended_by": m}
    """
    try:
        infos = _discover(directory)
    except DiscoveryExhausted as e:
        return _error_text(e)
    data = {name: {"depends": out, "depended_by": inn} for name, (out, inn) in bundle_coupling(infos).items()}
    return json.dumps(data, indent=2, ensure_ascii=False)


def main():
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
