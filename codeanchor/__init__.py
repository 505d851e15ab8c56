"""codeanchor: a deterministic structural map of a source tree.

Typical use::

    from codeanchor import GraphSession

    session = GraphSession("path/to/project")
    report = session.build()
    session.search("Config")
    session.deps("src/app.py")
"""

from .errors import (
    AmbiguousTarget,
    AnchorError,
    BuildCancelled,
    GraphNotReady,
    InvalidPattern,
    NoSupportedFiles,
    NotFound,
    ParseError,
    RootUnreadable,
    UnsupportedLanguage,
)
from .graph import GraphVersion
from .models import BuildOptions, BuildReport
from .parser import AdapterRegistry, default_registry, detect_language
from .session import GraphSession
from .storage import GraphStore, ProjectManager, project_dir_for

__version__ = "0.1.0"

__all__ = [
    "AdapterRegistry",
    "AmbiguousTarget",
    "AnchorError",
    "BuildCancelled",
    "BuildOptions",
    "BuildReport",
    "GraphNotReady",
    "GraphSession",
    "GraphStore",
    "GraphVersion",
    "NoSupportedFiles",
    "NotFound",
    "ParseError",
    "ProjectManager",
    "RootUnreadable",
    "UnsupportedLanguage",
    "default_registry",
    "detect_language",
    "project_dir_for",
]
