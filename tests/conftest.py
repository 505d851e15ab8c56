"""Pytest configuration and fixtures for codeanchor tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

from codeanchor.models import BuildOptions
from codeanchor.session import GraphSession
from codeanchor.storage import GraphStore, ProjectManager

# The sample project ships its own test module; it is indexed, not collected
collect_ignore_glob = ["fixtures/*"]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture(autouse=True)
def _isolated_home(temp_dir: Path, monkeypatch):
    """Keep config and stored graphs out of the real home directory."""
    memory_dir = temp_dir / ".anchor-home" / "memory"
    config_file = temp_dir / ".anchor-home" / "config.toml"

    # Patch both config AND storage modules (storage imports at module load)
    monkeypatch.setattr("codeanchor.config.MEMORY_DIR", memory_dir)
    monkeypatch.setattr("codeanchor.config.CONFIG_FILE", config_file)
    monkeypatch.setattr("codeanchor.storage.MEMORY_DIR", memory_dir)
    return memory_dir


@pytest.fixture
def project_root(temp_dir: Path) -> Path:
    root = temp_dir / "project"
    root.mkdir()
    return root


@pytest.fixture
def write_files(project_root: Path) -> Callable[[Dict[str, str]], Path]:
    """Write ``{relative path: text}`` under the project root."""

    def _write(files: Dict[str, str]) -> Path:
        for rel, text in files.items():
            path = project_root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return project_root

    return _write


@pytest.fixture
def build_options() -> BuildOptions:
    return BuildOptions(workers=2)


@pytest.fixture
def session(project_root: Path, build_options: BuildOptions) -> GraphSession:
    """Session on the (initially empty) temporary project root."""
    return GraphSession(project_root, build_options)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def sample_session(sample_project_path: Path, build_options: BuildOptions) -> GraphSession:
    """Session with the sample project already built."""
    session = GraphSession(sample_project_path, build_options)
    session.build()
    return session


@pytest.fixture
def temp_project_manager() -> ProjectManager:
    """ProjectManager writing under the patched memory directory."""
    return ProjectManager()


@pytest.fixture
def temp_graph_store(temp_dir: Path) -> Generator[GraphStore, None, None]:
    """Create a GraphStore with temporary storage."""
    project_dir = temp_dir / "test_project"
    project_dir.mkdir(parents=True, exist_ok=True)
    store = GraphStore(project_dir)
    yield store
    store.close()


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for extraction tests."""
    return '''"""Sample module for testing."""

def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {name}!"

class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    def multiply(self, a: int, b: int) -> int:
        """Multiply two numbers."""
        result = self.add(a, 0)  # Call to add
        for _ in range(b - 1):
            result = self.add(result, a)
        return result
'''
