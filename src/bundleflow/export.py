"""Export of analyzed objects as JSON type-tree dumps."""

from __future__ import annotations

import base64
import json
import logging
import re
from pathlib import Path
from typing import Any

from bundleflow.registry import BundleRecord
from bundleflow.runtime import AssetRuntime, ObjectIdentity

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def normalize_value(value: Any) -> Any:
    """Convert a type tree value into something ``json`` can serialize."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return {"__bytes__": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize_value(v) for v in value]
    return str(value)


def safe_file_name(name: str) -> str:
    return _UNSAFE_CHARS.sub("_", name).strip("_") or "unnamed"


class TypetreeExporter:
    """Writes ``<output_dir>/<bundle>/<Type>_<guid>.json`` for each owned object.

    The object's data comes from the runtime's optional ``dump_object``
    capability; runtimes without it only get the identity written.
    """

    def __init__(self, output_dir: Path, runtime: AssetRuntime):
        self.output_dir = Path(output_dir)
        self.runtime = runtime
        self.exported = 0

    def export(self, bundle: BundleRecord, obj: Any, identity: ObjectIdentity) -> Path | None:
        data: dict[str, Any] = {
            "guid": identity.guid,
            "name": identity.name,
            "type": identity.type_name,
            "bundle": bundle.name,
        }
        dump_object = getattr(self.runtime, "dump_object", None)
        if dump_object is not None:
            try:
                data["tree"] = normalize_value(dump_object(obj))
            except Exception as e:
                data["tree"] = {"__error__": str(e)}

        target_dir = self.output_dir / safe_file_name(bundle.name)
        target = target_dir / f"{safe_file_name(identity.type_name or 'Object')}_{identity.guid}.json"
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            logger.warning("Failed to export %s: %s", target, e)
            return None
        self.exported += 1
        return target
