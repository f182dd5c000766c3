# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync",
#   "purpose": "Package initialization for NexusSDE.DatasetSync",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public API for static data export synchronisation.

The package keeps a writable local dataset in step with releases published in
a remote record store, while a read-only baseline dataset shipped with the
application stays usable offline. Typical use::

    from NexusSDE.DatasetSync import build_context, load_config

    context = build_context(load_config())
    path = context.resolver.resolve_path(ResourceKind.DB, "item_db_en.sqlite")
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict, Tuple

__version__ = "0.4.0"

_EXPORTS: Dict[str, Tuple[str, str]] = {
    "ArtifactKind": (".artifacts", "ArtifactKind"),
    "ResourceKind": (".artifacts", "ResourceKind"),
    "DatasetDescriptor": (".descriptor", "DatasetDescriptor"),
    "VersionTuple": (".versioning", "VersionTuple"),
    "compare_versions": (".versioning", "compare_versions"),
    "DataSourceResolver": (".resolver", "DataSourceResolver"),
    "UpdateChecker": (".checker", "UpdateChecker"),
    "UpdateStatus": (".checker", "UpdateStatus"),
    "UpdatePipeline": (".pipeline", "UpdatePipeline"),
    "PipelineStatus": (".pipeline", "PipelineStatus"),
    "SyncConfig": (".settings", "SyncConfig"),
    "load_config": (".settings", "load_config"),
    "SyncContext": (".context", "SyncContext"),
    "build_context": (".context", "build_context"),
    "DatasetSyncError": (".errors", "DatasetSyncError"),
}

__all__ = ["__version__", *_EXPORTS]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .artifacts import ArtifactKind, ResourceKind
    from .checker import UpdateChecker, UpdateStatus
    from .context import SyncContext, build_context
    from .descriptor import DatasetDescriptor
    from .errors import DatasetSyncError
    from .pipeline import PipelineStatus, UpdatePipeline
    from .resolver import DataSourceResolver
    from .settings import SyncConfig, load_config
    from .versioning import VersionTuple, compare_versions


def __getattr__(name: str) -> Any:
    """Lazily import API exports so the CLI starts without loading every module."""

    target = _EXPORTS.get(name)
    if target is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    module = import_module(target[0], __name__)
    value = getattr(module, target[1])
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    """Expose lazily-populated attributes in ``dir()`` results."""

    return sorted(set(globals()) | set(__all__))
