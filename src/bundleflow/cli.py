"""Command-line interface for bundleflow.

Provides commands for analyzing a directory of built asset bundles: the
bundle dependency graph, per-bundle object reachability and duplicated assets.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from bundleflow import __version__, config
from bundleflow.analyzer import AnalyzeOptions, BundleAnalyzer
from bundleflow.depgraph import compute_reverse_depends
from bundleflow.discovery import discover_bundles
from bundleflow.errors import DiscoveryExhausted
from bundleflow.report import AnalysisReport
from bundleflow.scene import ThreadedSceneAnalyzer
from bundleflow.unitypy_runtime import UnityPyRuntime


def create_analyzer(
    directory: Path,
    scene_only: bool = False,
    export_dir: Path | None = None,
    scene_workers: int = config.SCENE_WORKERS,
) -> BundleAnalyzer:
    """Create an analyzer wired to the UnityPy runtime.

    Args:
        directory: Build output directory (bundle names are relative to it)
        scene_only: Only analyze scene bundles
        export_dir: Export owned objects to this directory when set
        scene_workers: Worker threads for scene bundles

    Returns:
        A ready-to-use BundleAnalyzer
    """
    runtime = UnityPyRuntime(root=directory)
    options = AnalyzeOptions.from_env()
    options.analyze_only_scene = scene_only or options.analyze_only_scene
    if export_dir is not None:
        options.analyze_export = True
        options.export_dir = export_dir
    return BundleAnalyzer(
        runtime,
        scene_analyzer_factory=lambda attributor: ThreadedSceneAnalyzer(runtime, attributor, scene_workers),
        options=options,
    )


def _run_analysis(directory: Path, timeout: float | None, **kwargs) -> AnalysisReport:
    analyzer = create_analyzer(directory, **kwargs)
    if not analyzer.analyze(directory):
        click.echo(f"Error: No asset bundles could be analyzed in {directory}", err=True)
        sys.exit(1)
    try:
        if not analyzer.wait(timeout=timeout):
            click.echo("Warning: Scene analysis did not finish, results are partial", err=True)
        return AnalysisReport.from_registry(analyzer.registry)
    finally:
        analyzer.clear()


@click.group()
@click.version_option(version=__version__, prog_name="bundleflow")
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v info, -vv debug)")
def main(verbose: int) -> None:
    """Asset bundle dependency and reachability analyzer.

    Reconstructs the bundle dependency graph and the object containment graph
    of a build output directory, to find duplicated assets and bundle coupling
    without re-running the build.
    """
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@main.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.option("--scene-only", is_flag=True, help="Only analyze scene bundles")
@click.option(
    "--export",
    "export_dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Export every owned object as JSON into this directory",
)
@click.option("--timeout", type=float, default=None, help="Seconds to wait for scene analysis")
def analyze(
    directory: Path,
    output_format: str,
    scene_only: bool,
    export_dir: Path | None,
    timeout: float | None,
) -> None:
    """Analyze every bundle in DIRECTORY.

    Examples:

        # Summary of a build
        bundleflow analyze Build/AssetBundles/Android

        # Full JSON report
        bundleflow analyze Build/AssetBundles/Android --format json

        # Dump analyzed objects
        bundleflow analyze Build/AssetBundles/Android --export out/
    """
    report = _run_analysis(directory, timeout, scene_only=scene_only, export_dir=export_dir)

    if output_format == "json":
        click.echo(json.dumps(report.to_dict(), indent=2))
        return

    data = report.to_dict()
    click.echo(f"Analyzed: {directory}")
    click.echo()
    click.echo("Summary:")
    click.echo(f"  Bundles: {data['summary']['bundles']}")
    click.echo(f"  Scene bundles: {data['summary']['scene_bundles']}")
    click.echo(f"  Failed to load: {data['summary']['failed_bundles']}")
    click.echo(f"  Assets: {data['summary']['assets']}")
    click.echo(f"  Duplicated assets: {data['summary']['duplicated_assets']}")
    click.echo()

    click.echo("Bundles:")
    for info in report.bundles:
        flags = []
        if info.is_scene:
            flags.append("scene")
        if info.load_failed:
            flags.append("failed")
        flag_str = f" [{', '.join(flags)}]" if flags else ""
        click.echo(
            f"  {info.name}{flag_str}: {len(info.assets)} assets, "
            f"{len(info.all_depends)} depends, {len(info.be_depends)} depended by"
        )


@main.command(name="deps")
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--bundle", "bundle_name", type=str, help="Only show this bundle")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
def deps(directory: Path, bundle_name: str | None, output_format: str) -> None:
    """Show the bundle dependency graph of DIRECTORY.

    Only reads the manifest (or scans for bundle files); bundle contents are
    not loaded.

    Examples:

        bundleflow deps Build/AssetBundles/Android

        bundleflow deps Build/AssetBundles/Android --bundle ui/main
    """
    try:
        infos = discover_bundles(directory, UnityPyRuntime(root=directory))
    except DiscoveryExhausted as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    compute_reverse_depends(infos)

    if bundle_name is not None:
        infos = [i for i in infos if i.name == bundle_name]
        if not infos:
            click.echo(f"Error: Bundle not found: {bundle_name}", err=True)
            sys.exit(1)

    if output_format == "json":
        click.echo(
            json.dumps(
                [
                    {
                        "name": i.name,
                        "direct_depends": i.direct_depends,
                        "all_depends": i.all_depends,
                        "be_depends": i.be_depends,
                    }
                    for i in infos
                ],
                indent=2,
            )
        )
        return

    for info in infos:
        click.echo(info.name)
        click.echo(f"  depends: {', '.join(info.direct_depends) or '-'}")
        if info.all_depends != info.direct_depends:
            click.echo(f"  all depends: {', '.join(info.all_depends) or '-'}")
        click.echo(f"  depended by: {', '.join(info.be_depends) or '-'}")


@main.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.option("--timeout", type=float, default=None, help="Seconds to wait for scene analysis")
def duplicates(directory: Path, timeout: float | None) -> None:
    """List assets carried by more than one bundle in DIRECTORY."""
    report = _run_analysis(directory, timeout)
    dupes = report.duplicated_assets
    if not dupes:
        click.echo("No duplicated assets found.")
        return

    click.echo(f"Duplicated assets: {len(dupes)}")
    for asset in dupes:
        label = asset.name or str(asset.guid)
        type_str = f" [{asset.type_name}]" if asset.type_name else ""
        click.echo(f"  {label}{type_str}: {', '.join(asset.bundles)}")


if __name__ == "__main__":
    main()
