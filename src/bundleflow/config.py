"""Environment-driven settings and bundle file constants."""

import os


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


BUNDLE_MAGIC = b"Unity"
BUNDLE_SIGNATURE_LENGTH = len(BUNDLE_MAGIC)

ANALYZE_EXPORT = _env_flag("BUNDLEFLOW_ANALYZE_EXPORT")
ANALYZE_ONLY_SCENE = _env_flag("BUNDLEFLOW_SCENE_ONLY")
EXPORT_DIR = os.environ.get("BUNDLEFLOW_EXPORT_DIR", "bundleflow-export")
SCENE_WORKERS = int(os.environ.get("BUNDLEFLOW_SCENE_WORKERS", "2"))
POLL_INTERVAL = float(os.environ.get("BUNDLEFLOW_POLL_INTERVAL", "0.1"))
