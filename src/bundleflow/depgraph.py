"""Bundle-level dependency graph helpers."""

from __future__ import annotations

from collections import deque
from typing import Iterable, Mapping, Sequence

from bundleflow.registry import BundleRecord


def compute_reverse_depends(records: Sequence[BundleRecord]) -> None:
    """Recompute ``be_depends`` for every record.

    ``a.be_depends`` becomes exactly the names of the other records whose
    ``all_depends`` contain ``a.name``, in record order. Existing values are
    replaced, so calling this twice gives the same result.

    Args:
        records: Every bundle of the analysis run
    """
    depends_sets = [(r, set(r.all_depends)) for r in records]
    for info in records:
        info.be_depends = [
            other.name
            for other, other_depends in depends_sets
            if other is not info and other.name != info.name and info.name in other_depends
        ]


def transitive_depends(name: str, direct: Mapping[str, Iterable[str]]) -> list[str]:
    """Transitive closure of a bundle's direct dependencies.

    Breadth-first, first-seen order. Cycles are tolerated and the bundle
    itself is never part of its own closure.

    Args:
        name: Bundle to start from
        direct: Bundle name -> direct dependency names

    Returns:
        Ordered list of every bundle reachable from ``name``
    """
    seen: set[str] = {name}
    result: list[str] = []
    queue = deque(direct.get(name, ()))
    while queue:
        dep = queue.popleft()
        if dep in seen:
            continue
        seen.add(dep)
        result.append(dep)
        queue.extend(direct.get(dep, ()))
    return result


def bundle_coupling(records: Sequence[BundleRecord]) -> dict[str, tuple[int, int]]:
    """Fan-out (transitive depends) and fan-in (depended by) per bundle."""
    return {r.name: (len(r.all_depends), len(r.be_depends)) for r in records}
