"""Shared test fixtures for frecent testing."""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Callable, Dict, Generator
import sys

# Add parent directory to path so we can import frecent
sys.path.insert(0, str(Path(__file__).parent.parent))

import frecent


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp()).resolve()
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def data_file(temp_dir: Path) -> Path:
    """Location of the data file (not created)."""
    return temp_dir / "state" / ".z"


@pytest.fixture
def tree(temp_dir: Path) -> Path:
    """A small directory tree to visit."""
    root = temp_dir / "tree"
    for relative in (
        "src/project/docs/api/v1",
        "src/project/tests",
        "src/other",
        "Work/Foo/Bar",
        "work/foo/bar",
        "music",
    ):
        (root / relative).mkdir(parents=True)
    return root


@pytest.fixture
def settings(data_file: Path) -> frecent.Settings:
    """Settings pointing at the temporary data file."""
    return frecent.Settings(data_file=data_file)


@pytest.fixture
def store(settings: frecent.Settings) -> frecent.FrecencyStore:
    """Engine bound to the temporary data file."""
    return frecent.FrecencyStore(settings, quiet=True)


@pytest.fixture
def write_entries(data_file: Path) -> Callable[[Dict[str, tuple]], None]:
    """Write {path: (rank, last_access)} straight to the data file."""
    def _write(rows: Dict[str, tuple]) -> None:
        data_file.parent.mkdir(parents=True, exist_ok=True)
        lines = [f"{path}|{rank}|{when}" for path, (rank, when) in rows.items()]
        data_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return _write


@pytest.fixture
def sample_config() -> Dict[str, Dict]:
    """Sample configuration for testing."""
    return {
        "store": {
            "data_file": "~/.z-test",
            "max_score": 500,
            "always_keep": ["/mnt/usb"],
            "owner": None,
            "lock": "none",
            "lock_timeout": 0.1,
        },
        "tracking": {
            "exclude_dirs": ["/tmp"],
            "home": "/home/tester",
            "resolve_symlinks": False,
        },
        "matching": {
            "case": "smart",
            "uncommon": True,
            "completion": "legacy",
        },
    }
