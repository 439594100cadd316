#!/usr/bin/env python3
"""frecent - jump to frequently and recently used directories.

Keeps a ranked record of the directories you visit and resolves a partial
query to the best one by "frecency" (frequency + recency).

  frecent add /some/dir                 # Record a visit (called from a shell hook)
  frecent query foo                     # Print the most frecent directory matching foo
  frecent query foo bar                 # Match foo then bar (e.g. /foo/bat/bar/quux)
  frecent query -r foo                  # Highest ranked match
  frecent query -t foo                  # Most recently accessed match
  frecent query -l foo                  # List all matches with their scores
  frecent query -c foo                  # Only match below the current directory
  frecent remove                        # Forget the current directory
  frecent complete fo                   # Completion candidates, most frecent first

Key Features:
• Data file compatible with z / zsh-z (path|rank|last_access lines)
• Atomic writes with advisory locking, degrading to rename-only
• Aging: ranks decay once their total exceeds max_score
• Case-sensitive matching with case-insensitive fallback
• Common-root and "uncommon" reductions of the best match
• Config Support: optional ~/.frecent.yaml for customization
"""

# Standard library imports
import argparse
import contextlib
import enum
import math
import os
import re
import stat
import sys
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

import yaml

try:
    import fcntl  # Linux/Unix
except ImportError:
    fcntl = None

# Version information
__version__ = "1.0.0"

# Constants
DEFAULT_DATA_FILE = "~/.z"
DEFAULT_CONFIG_FILENAME = ".frecent.yaml"
DEFAULT_MAX_SCORE = 9000.0
AGING_FACTOR = 0.99
DEFAULT_LOCK_TIMEOUT = 0.5  # seconds spent polling for the write lock
LOCK_POLL_INTERVAL = 0.02
FIELD_SEPARATOR = "|"
COMPLETION_STYLES = ("frecent", "legacy")
LOCK_MODES = ("auto", "flock", "none")

# Error sanitization patterns
UNIX_PATH_PATTERN = re.compile(r"(?:/[^/\s]*)+/")
FILE_URL_PATTERN = re.compile(r"\bfile://[^\s]*")

# Exit codes
EXIT_OK = 0
EXIT_STATUS = 1
EXIT_HARD_ERROR = 2


def sanitize_error_message(error_msg: str) -> str:
    """Strip directory components from error text before it is shown."""
    sanitized = FILE_URL_PATTERN.sub("[FILE_PATH]", error_msg)
    sanitized = UNIX_PATH_PATTERN.sub("", sanitized)
    return sanitized


def log_error(message: str, error: Optional[Exception] = None, *, quiet: bool = False) -> None:
    """Centralized error logging with consistent formatting."""
    if quiet:
        return

    if error:
        sanitized_error = sanitize_error_message(str(error))
        print(f"frecent: ERROR: {message}: {sanitized_error}", file=sys.stderr)
    else:
        print(f"frecent: ERROR: {message}", file=sys.stderr)


def log_warning(message: str, error: Optional[Exception] = None, *, quiet: bool = False) -> None:
    """Centralized warning logging with consistent formatting."""
    if quiet:
        return

    if error:
        sanitized_error = sanitize_error_message(str(error))
        print(f"frecent: Warning: {message}: {sanitized_error}", file=sys.stderr)
    else:
        print(f"frecent: Warning: {message}", file=sys.stderr)


class StoreError(Exception):
    """The configured data file cannot be read or written at all."""


class StoreWriteError(StoreError):
    """Writing the temporary file or renaming it over the data file failed."""


class Status(enum.Enum):
    """Outcome of an engine call. Recoverable conditions are values, not exceptions."""

    OK = "ok"
    SKIPPED = "skipped"
    LOCK_UNAVAILABLE = "lock_unavailable"
    NOT_OWNER = "not_owner"
    NO_MATCH = "no_match"
    NOT_FOUND = "not_found"
    WRITE_FAILED = "write_failed"


class Ranking(enum.Enum):
    RANK = "rank"
    TIME = "time"
    FRECENCY = "frecency"


class CaseMode(enum.Enum):
    SENSITIVE_THEN_INSENSITIVE = "sensitive_then_insensitive"
    IGNORE = "ignore"
    SMART = "smart"


class OutputFormat(enum.Enum):
    SINGLE = "single"
    LIST = "list"
    COMPLETION = "completion"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def load_config(config_path: Optional[str] = None, *, quiet: bool = False) -> Dict[str, Any]:
    """Load optional configuration file."""
    default_config = {
        "store": {
            "data_file": DEFAULT_DATA_FILE,
            "max_score": DEFAULT_MAX_SCORE,
            "always_keep": [],  # Paths never purged by compaction
            "owner": None,  # Set when running under sudo with $HOME kept
            "lock": "auto",
            "lock_timeout": DEFAULT_LOCK_TIMEOUT,
        },
        "tracking": {
            "exclude_dirs": [],
            "home": None,  # Defaults to the invoking user's home directory
            "resolve_symlinks": True,
        },
        "matching": {
            "case": CaseMode.SENSITIVE_THEN_INSENSITIVE.value,
            "uncommon": False,
            "completion": "frecent",
        },
    }

    config_file = (
        Path(config_path).expanduser()
        if config_path
        else Path.home() / DEFAULT_CONFIG_FILENAME
    )
    if config_file.exists():
        try:
            with open(config_file, "r", encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}

            if isinstance(user_config, dict):
                for section in list(user_config):
                    if section in default_config and not isinstance(user_config[section], dict):
                        log_warning(
                            f"Ignoring '{section}' in {config_file}: expected a mapping",
                            quiet=quiet,
                        )
                        del user_config[section]
                _merge_configs(default_config, user_config)
            else:
                log_warning(f"Ignoring {config_file}: expected a mapping", quiet=quiet)
        except (FileNotFoundError, PermissionError, IsADirectoryError) as e:
            log_warning(f"Could not access config file {config_file}", e, quiet=quiet)
        except yaml.YAMLError as yaml_error:
            log_warning(f"Invalid YAML format in {config_file}", yaml_error, quiet=quiet)

    return default_config


def _merge_configs(default: Dict[str, Any], user: Dict[str, Any]) -> None:
    """Recursively merge user config into default config."""
    for key, value in user.items():
        if (
            key in default
            and isinstance(default[key], dict)
            and isinstance(value, dict)
        ):
            _merge_configs(default[key], value)
        else:
            default[key] = value


def apply_env_overrides(config: Dict[str, Any], environ: Mapping[str, str]) -> None:
    """Fold FRECENT_* environment variables into a loaded config."""
    if environ.get("FRECENT_DATA"):
        config["store"]["data_file"] = environ["FRECENT_DATA"]
    if environ.get("FRECENT_OWNER"):
        config["store"]["owner"] = environ["FRECENT_OWNER"]
    if environ.get("FRECENT_EXCLUDE_DIRS"):
        config["tracking"]["exclude_dirs"] = [
            d for d in environ["FRECENT_EXCLUDE_DIRS"].split(os.pathsep) if d
        ]
    if environ.get("FRECENT_CASE"):
        config["matching"]["case"] = environ["FRECENT_CASE"]
    if "FRECENT_UNCOMMON" in environ:
        config["matching"]["uncommon"] = environ["FRECENT_UNCOMMON"].lower() not in (
            "", "0", "false", "no", "off",
        )
    if environ.get("FRECENT_COMPLETION"):
        config["matching"]["completion"] = environ["FRECENT_COMPLETION"]


@dataclass(frozen=True)
class Settings:
    """Immutable per-invocation settings threaded into every engine call."""

    data_file: Path = field(default_factory=lambda: Path(DEFAULT_DATA_FILE).expanduser())
    max_score: float = DEFAULT_MAX_SCORE
    exclude_dirs: Tuple[str, ...] = ()
    always_keep: Tuple[str, ...] = ()
    home: Optional[str] = None
    resolve_symlinks: bool = True
    case_mode: CaseMode = CaseMode.SENSITIVE_THEN_INSENSITIVE
    uncommon: bool = False
    completion: str = "frecent"
    owner: Optional[str] = None
    lock: str = "auto"
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Settings":
        store = _config_section(config, "store")
        tracking = _config_section(config, "tracking")
        matching = _config_section(config, "matching")

        completion = str(matching.get("completion", "frecent"))
        if completion not in COMPLETION_STYLES:
            raise ValueError(f"Unknown completion style: {completion}")
        lock = str(store.get("lock", "auto"))
        if lock not in LOCK_MODES:
            raise ValueError(f"Unknown lock mode: {lock}")
        owner = store.get("owner") or None
        if owner is not None:
            owner = str(owner)
            owner_ids(owner)

        try:
            max_score = float(store.get("max_score", DEFAULT_MAX_SCORE))
            lock_timeout = float(store.get("lock_timeout", DEFAULT_LOCK_TIMEOUT))
        except (TypeError, ValueError) as error:
            raise ValueError(f"Invalid number in store settings: {error}") from error

        return cls(
            data_file=Path(str(store.get("data_file") or DEFAULT_DATA_FILE)).expanduser(),
            max_score=max_score,
            exclude_dirs=_path_list(tracking.get("exclude_dirs"), "tracking.exclude_dirs"),
            always_keep=_path_list(store.get("always_keep"), "store.always_keep"),
            home=str(tracking.get("home") or Path.home()),
            resolve_symlinks=bool(tracking.get("resolve_symlinks", True)),
            case_mode=CaseMode(matching.get("case", CaseMode.SENSITIVE_THEN_INSENSITIVE.value)),
            uncommon=bool(matching.get("uncommon", False)),
            completion=completion,
            owner=owner,
            lock=lock,
            lock_timeout=lock_timeout,
        )


def _config_section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = config.get(name) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return section


def _path_list(value: Any, key: str) -> Tuple[str, ...]:
    """A single path or a list of paths."""
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        return tuple(str(item) for item in value)
    raise ValueError(f"{key} must be a path or a list of paths")


def owner_ids(owner: str) -> Tuple[int, int]:
    """(uid, gid) of a user name."""
    import pwd

    try:
        record = pwd.getpwnam(owner)
    except KeyError:
        raise ValueError(f"Unknown owner: {owner}") from None
    return record.pw_uid, record.pw_gid


# ---------------------------------------------------------------------------
# Store & compaction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Entry:
    path: str
    rank: float
    last_access: int


def format_rank(rank: float) -> str:
    """Plain numeric form used in the data file."""
    rank = float(rank)
    if rank.is_integer():
        return str(int(rank))
    return repr(rank)


def parse_store(text: str) -> Dict[str, Entry]:
    """Parse data file contents. Malformed lines are skipped."""
    entries: Dict[str, Entry] = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = line.rsplit(FIELD_SEPARATOR, 2)
        if len(parts) != 3 or not parts[0]:
            continue
        path, rank_field, time_field = parts
        try:
            rank = float(rank_field)
            last_access = int(float(time_field))
        except (ValueError, OverflowError):
            continue
        if not math.isfinite(rank) or rank < 0:
            continue
        entries[path] = Entry(path, rank, last_access)
    return entries


def serialize_store(entries: Mapping[str, Entry]) -> str:
    lines = [
        f"{entry.path}{FIELD_SEPARATOR}{format_rank(entry.rank)}{FIELD_SEPARATOR}{entry.last_access}"
        for _, entry in sorted(entries.items())
    ]
    return "\n".join(lines) + "\n" if lines else ""


def resolve_data_file(path: Path) -> Path:
    """Dereference a symlinked data file so replacing it updates the target."""
    path = Path(path).expanduser()
    if path.is_symlink():
        return Path(os.path.realpath(path))
    return path


def read_store(path: Path) -> Dict[str, Entry]:
    """Load the data file; a missing file is an empty store."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except IsADirectoryError as error:
        raise StoreError(f"Data file {path} is a directory") from error
    except (OSError, UnicodeDecodeError) as error:
        raise StoreError(f"Cannot read data file {path}") from error
    return parse_store(text)


def compact(entries: Mapping[str, Entry], always_keep: Sequence[str] = ()) -> Dict[str, Entry]:
    """Drop entries whose directory no longer exists."""
    keep = set(always_keep)
    return {
        path: entry
        for path, entry in entries.items()
        if path in keep or os.path.isdir(path)
    }


def age_entries(entries: Mapping[str, Entry], factor: float = AGING_FACTOR) -> Dict[str, Entry]:
    """Scale every rank by ``factor``; ranks that fall below 1 are evicted."""
    aged: Dict[str, Entry] = {}
    for path, entry in entries.items():
        rank = entry.rank * factor
        if rank >= 1:
            aged[path] = replace(entry, rank=rank)
    return aged


def apply_visit(
    entries: Mapping[str, Entry],
    path: str,
    now: int,
    max_score: float = DEFAULT_MAX_SCORE,
) -> Dict[str, Entry]:
    """Fold one visit into a compacted table and age it if needed."""
    total = sum(entry.rank for entry in entries.values())

    updated = dict(entries)
    current = updated.get(path)
    if current is None:
        updated[path] = Entry(path, 1.0, now)
    else:
        updated[path] = Entry(path, current.rank + 1, now)

    # The threshold is checked against the table as it was before this visit.
    if total > max_score:
        updated = age_entries(updated)
    return updated


def _chown_to_owner(path: str, owner: str) -> None:
    uid, gid = owner_ids(owner)
    os.chown(path, uid, gid)


def write_store(path: Path, entries: Mapping[str, Entry], owner: Optional[str] = None) -> None:
    """Atomically replace the data file with ``entries``.

    The table is written to a unique temporary file in the same directory and
    renamed over the data file, so readers only ever see a complete table.
    On failure the temporary file is removed and the data file is untouched.
    """
    path = Path(path)
    try:
        fd, temp_name = tempfile.mkstemp(prefix=f"{path.name}.", dir=str(path.parent))
    except OSError as error:
        raise StoreError(f"Cannot create a temporary file next to {path}") from error

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(serialize_store(entries))
            handle.flush()
            os.fsync(handle.fileno())
        with contextlib.suppress(FileNotFoundError):
            os.chmod(temp_name, stat.S_IMODE(os.stat(path).st_mode))
        if owner:
            _chown_to_owner(temp_name, owner)
        os.replace(temp_name, path)
    except (OSError, ValueError) as error:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(temp_name)
        raise StoreWriteError(f"Could not replace {path}") from error


# ---------------------------------------------------------------------------
# Write locking
# ---------------------------------------------------------------------------


class LockingUnsupported(OSError):
    """The filesystem holding the data file rejects advisory locks."""


class LockStrategy:
    """Serializes writers of the data file.

    ``acquire(path)`` is a context manager yielding True when the caller may
    read, compute and write the new table, False when the write must be
    dropped.
    """

    name = "base"

    def acquire(self, path: Path):
        raise NotImplementedError


class RenameOnlyStrategy(LockStrategy):
    """No lock at all; atomic rename is the only guarantee.

    Concurrent writers race: the last rename wins and the other update is
    lost. Readers still never observe a partially written file.
    """

    name = "none"

    @contextmanager
    def acquire(self, path: Path) -> Iterator[bool]:
        yield True


class FlockStrategy(LockStrategy):
    """Advisory exclusive ``flock`` on the data file itself."""

    name = "flock"

    def __init__(
        self,
        timeout: float = DEFAULT_LOCK_TIMEOUT,
        poll_interval: float = LOCK_POLL_INTERVAL,
    ) -> None:
        if fcntl is None:
            raise ValueError("Advisory file locking is not available on this platform")
        self.timeout = max(0.0, timeout)
        self.poll_interval = poll_interval

    @contextmanager
    def acquire(self, path: Path) -> Iterator[bool]:
        supported = True
        try:
            fd = self._lock(Path(path))
        except LockingUnsupported:
            supported, fd = False, None
        if not supported:
            # No lock on this filesystem; the atomic rename is all that is left.
            yield True
            return
        if fd is None:
            yield False
            return
        try:
            yield True
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _lock(self, path: Path) -> Optional[int]:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o600)
            except OSError as error:
                raise StoreError(f"Cannot open data file {path}") from error

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
            except OSError as error:
                os.close(fd)
                raise LockingUnsupported(f"flock is not supported for {path}") from error
            else:
                if _same_file(fd, path):
                    return fd
                # Replaced by another writer while we waited; lock the new file.
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)

            if time.monotonic() >= deadline:
                return None
            time.sleep(self.poll_interval)


def _same_file(fd: int, path: Path) -> bool:
    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (on_disk.st_dev, on_disk.st_ino) == (held.st_dev, held.st_ino)


def make_lock_strategy(settings: Settings) -> LockStrategy:
    """Pick the write discipline for this invocation."""
    if settings.lock == "none":
        return RenameOnlyStrategy()
    if settings.lock == "flock":
        return FlockStrategy(settings.lock_timeout)
    if settings.lock == "auto":
        if fcntl is not None:
            return FlockStrategy(settings.lock_timeout)
        return RenameOnlyStrategy()
    raise ValueError(f"Unknown lock mode: {settings.lock}")


# ---------------------------------------------------------------------------
# Matching & ranking
# ---------------------------------------------------------------------------


def frecency(rank: float, last_access: int, now: int) -> float:
    """Smooth decay from 4x rank (just visited) towards 0.25x rank."""
    dx = now - last_access
    return rank * (3.75 / (0.0001 * dx + 1) + 0.25)


def _is_within(path: str, root: str) -> bool:
    root = root.rstrip("/") or "/"
    if path == root:
        return True
    return path.startswith(root if root.endswith("/") else root + "/")


@dataclass(frozen=True)
class QueryPattern:
    """Ordered substrings a path must contain, optionally below an anchor."""

    tokens: Tuple[str, ...] = ()
    anchor: Optional[str] = None

    @classmethod
    def parse(cls, text: str, anchor: Optional[str] = None) -> "QueryPattern":
        return cls(tuple((text or "").split()), anchor)

    def has_uppercase(self) -> bool:
        return any(token != token.lower() for token in self.tokens)

    def matches(self, path: str, ignore_case: bool = False) -> bool:
        haystack = path.lower() if ignore_case else path
        position = 0
        if self.anchor is not None:
            anchor = self.anchor.lower() if ignore_case else self.anchor
            if not _is_within(haystack, anchor):
                return False
            position = len(anchor.rstrip("/"))

        for token in self.tokens:
            needle = token.lower() if ignore_case else token
            index = haystack.find(needle, position)
            if index < 0:
                return False
            position = index + len(needle)
        return True

    def count_in(self, path: str, ignore_case: bool = False) -> int:
        haystack = path.lower() if ignore_case else path
        return sum(
            haystack.count(token.lower() if ignore_case else token)
            for token in self.tokens
        )


@dataclass
class MatchSet:
    matches: Dict[str, float] = field(default_factory=dict)
    best: Optional[str] = None
    case_insensitive: bool = False


def best_match(matches: Mapping[str, float]) -> Optional[str]:
    """Highest score wins; equal scores go to the lexicographically smallest path."""
    if not matches:
        return None
    return min(matches.items(), key=lambda item: (-item[1], item[0]))[0]


class Matcher:
    """Scores every entry against a pattern under a ranking mode."""

    def __init__(
        self,
        ranking: Ranking = Ranking.FRECENCY,
        case_mode: CaseMode = CaseMode.SENSITIVE_THEN_INSENSITIVE,
        now: Optional[int] = None,
    ) -> None:
        self.ranking = Ranking(ranking)
        self.case_mode = CaseMode(case_mode)
        self.now = int(time.time()) if now is None else int(now)

    def score(self, entry: Entry) -> float:
        if self.ranking is Ranking.RANK:
            return entry.rank
        if self.ranking is Ranking.TIME:
            return float(entry.last_access - self.now)
        return frecency(entry.rank, entry.last_access, self.now)

    def _passes(self, pattern: QueryPattern) -> Tuple[bool, bool]:
        """Which of (case-sensitive, case-insensitive) comparisons to run."""
        if self.case_mode is CaseMode.IGNORE:
            return False, True
        if self.case_mode is CaseMode.SMART:
            if pattern.has_uppercase():
                return True, False
            return False, True
        return True, True

    def match(self, entries: Mapping[str, Entry], pattern: QueryPattern) -> MatchSet:
        check_sensitive, check_insensitive = self._passes(pattern)
        sensitive: Dict[str, float] = {}
        insensitive: Dict[str, float] = {}

        for path in sorted(entries):
            if check_sensitive and pattern.matches(path):
                sensitive[path] = self.score(entries[path])
            elif check_insensitive and pattern.matches(path, ignore_case=True):
                insensitive[path] = self.score(entries[path])

        if sensitive:
            return MatchSet(sensitive, best_match(sensitive), False)
        if insensitive:
            return MatchSet(insensitive, best_match(insensitive), True)
        return MatchSet()


# ---------------------------------------------------------------------------
# Reduction
# ---------------------------------------------------------------------------


def _common_ancestor(paths: Sequence[str]) -> Optional[str]:
    split = [path.rstrip("/").split("/") for path in paths]
    prefix: List[str] = []
    for parts in zip(*split):
        if any(part != parts[0] for part in parts):
            break
        prefix.append(parts[0])
    # [""] alone is the filesystem root
    if len(prefix) <= 1:
        return None
    return "/".join(prefix)


def common_root(
    matches: Mapping[str, float],
    pattern: Optional[QueryPattern] = None,
    ignore_case: bool = False,
) -> Optional[str]:
    """Deepest ancestor-or-equal shared by every nonzero-score match.

    Reported only if it is one of the matches itself, or if it matches
    ``pattern``. The filesystem root is never reported.
    """
    scored = [path for path, score in matches.items() if score]
    if len(scored) < 2:
        return None

    root = _common_ancestor(scored)
    if root is None:
        return None
    if root in scored:
        return root
    if pattern is not None and pattern.tokens and pattern.matches(root, ignore_case):
        return root
    return None


def trim_uncommon(best: str, pattern: QueryPattern, ignore_case: bool = False) -> str:
    """Walk up from ``best`` while the query still occurs as often."""
    if not pattern.tokens:
        return best

    target = pattern.count_in(best, ignore_case)
    current = best
    while True:
        parent = os.path.dirname(current.rstrip("/")) or "/"
        if parent == current or pattern.count_in(parent, ignore_case) != target:
            return current
        current = parent


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def format_listing(matches: Mapping[str, float], common: Optional[str] = None) -> List[str]:
    ordered = sorted((score, path) for path, score in matches.items() if score)
    lines = [f"{score:<10.2f} {path}" for score, path in ordered]
    if len(lines) > 1 and common:
        lines.append(f"{'common:':<10} {common}")
    return lines


def format_completion(matches: Mapping[str, float]) -> List[str]:
    scored = [(path, score) for path, score in matches.items() if score]
    return [path for path, _ in sorted(scored, key=lambda item: (-item[1], item[0]))]


@dataclass
class QueryResult:
    status: Status
    lines: List[str] = field(default_factory=list)
    best: Optional[str] = None
    common: Optional[str] = None
    case_insensitive: bool = False
    matches: Dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class FrecencyStore:
    """add / remove / query against one data file."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        lock_strategy: Optional[LockStrategy] = None,
        quiet: bool = False,
    ) -> None:
        self.settings = settings or Settings()
        self.data_file = resolve_data_file(self.settings.data_file)
        self.lock_strategy = lock_strategy or make_lock_strategy(self.settings)
        self.quiet = quiet

    def entries(self) -> Dict[str, Entry]:
        """Compacted snapshot of the data file. Never writes."""
        return compact(read_store(self.data_file), self.settings.always_keep)

    def owns_store(self) -> bool:
        """False when someone else owns the data file and no owner is configured."""
        if self.settings.owner:
            return True
        try:
            info = os.stat(self.data_file)
        except FileNotFoundError:
            return True
        except OSError as error:
            raise StoreError(f"Cannot stat data file {self.data_file}") from error
        if not stat.S_ISREG(info.st_mode):
            return True
        geteuid = getattr(os, "geteuid", None)
        return geteuid is None or info.st_uid == geteuid()

    def is_excluded(self, path: str) -> bool:
        if not path or "\n" in path or FIELD_SEPARATOR in path:
            return True
        if self.settings.home and path == self.settings.home:
            return True
        return any(path.startswith(prefix) for prefix in self.settings.exclude_dirs)

    def add(self, path: str, now: Optional[int] = None) -> Status:
        """Record a visit to ``path``."""
        if not self.owns_store():
            return Status.NOT_OWNER
        if self.is_excluded(path):
            return Status.SKIPPED

        now = int(time.time()) if now is None else int(now)

        def visit(entries: Dict[str, Entry]) -> Tuple[Dict[str, Entry], Status]:
            return apply_visit(entries, path, now, self.settings.max_score), Status.OK

        return self._rewrite(visit)

    def remove(self, path: str) -> Status:
        """Forget ``path``. NOT_FOUND leaves the data file untouched."""
        if not self.owns_store():
            return Status.NOT_OWNER
        if not self.data_file.exists():
            return Status.NOT_FOUND

        def drop(entries: Dict[str, Entry]) -> Tuple[Dict[str, Entry], Status]:
            if path not in entries:
                return entries, Status.NOT_FOUND
            remaining = dict(entries)
            del remaining[path]
            return remaining, Status.OK

        return self._rewrite(drop)

    def _rewrite(
        self, change: Callable[[Dict[str, Entry]], Tuple[Dict[str, Entry], Status]]
    ) -> Status:
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StoreError(f"Cannot create {self.data_file.parent}") from error

        try:
            with self.lock_strategy.acquire(self.data_file) as acquired:
                if not acquired:
                    return Status.LOCK_UNAVAILABLE
                entries = compact(read_store(self.data_file), self.settings.always_keep)
                updated, status = change(entries)
                if status is not Status.OK:
                    return status
                write_store(self.data_file, updated, owner=self.settings.owner)
        except StoreWriteError as error:
            log_warning("Could not update the data file", error, quiet=self.quiet)
            return Status.WRITE_FAILED
        return Status.OK

    def query(
        self,
        text: str = "",
        ranking: Ranking = Ranking.FRECENCY,
        anchor: Optional[str] = None,
        output: OutputFormat = OutputFormat.SINGLE,
        uncommon: Optional[bool] = None,
        case_mode: Optional[CaseMode] = None,
        now: Optional[int] = None,
    ) -> QueryResult:
        """Resolve ``text`` to the best directory, a listing or completions."""
        if not self.owns_store():
            return QueryResult(Status.NOT_OWNER)

        output = OutputFormat(output)
        uncommon = self.settings.uncommon if uncommon is None else uncommon
        case_mode = self.settings.case_mode if case_mode is None else CaseMode(case_mode)

        pattern = QueryPattern.parse(text, anchor)
        found = Matcher(ranking, case_mode, now).match(self.entries(), pattern)
        if found.best is None:
            return QueryResult(Status.NO_MATCH)

        common = common_root(found.matches, pattern, found.case_insensitive)
        best = found.best
        if uncommon:
            best = trim_uncommon(best, pattern, found.case_insensitive)

        if output is OutputFormat.LIST:
            lines = format_listing(found.matches, common)
        elif output is OutputFormat.COMPLETION:
            lines = format_completion(found.matches)
        elif common is not None and not uncommon:
            lines = [common]
        else:
            lines = [best]
        if not lines:
            return QueryResult(Status.NO_MATCH, matches=found.matches)

        return QueryResult(
            Status.OK,
            lines,
            best=best,
            common=common,
            case_insensitive=found.case_insensitive,
            matches=found.matches,
        )

    def complete(self, prefix: str = "", now: Optional[int] = None) -> QueryResult:
        """Completion candidates in the configured completion style."""
        if self.settings.completion != "legacy":
            return self.query(prefix, output=OutputFormat.COMPLETION, now=now)

        if not self.owns_store():
            return QueryResult(Status.NOT_OWNER)
        pattern = QueryPattern.parse(prefix)
        ignore_case = prefix == prefix.lower()
        lines = [
            path for path in sorted(self.entries())
            if pattern.matches(path, ignore_case=ignore_case)
        ]
        if not lines:
            return QueryResult(Status.NO_MATCH)
        return QueryResult(Status.OK, lines, case_insensitive=ignore_case)


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------


def canonical_path(path: str, resolve_symlinks: bool = True) -> str:
    path = os.path.expanduser(path)
    if resolve_symlinks:
        return os.path.realpath(path)
    return os.path.abspath(path)


def parse_args(argv: Optional[Sequence[str]] = None) -> Any:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="frecent",
        description="Jump to a directory that you have visited frequently or recently, or a bit of both.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Shell hook:
    %(prog)s add "$PWD"                    # Record a visit (run it in the background)

  Jumping:
    cd "$(%(prog)s query foo)"             # Most frecent directory matching foo
    %(prog)s query -r foo                  # Match by rank
    %(prog)s query -t foo                  # Match by recent access
    %(prog)s query -c foo                  # Only below the current directory

  Listing:
    %(prog)s query                         # All tracked directories, ascending score
    %(prog)s query -l foo                  # All matches with scores

  Maintenance:
    %(prog)s remove                        # Forget the current directory
    %(prog)s complete fo                   # Completion candidates
        """,
    )

    parser.add_argument(
        "command",
        choices=["add", "remove", "query", "complete"],
        help="Command to execute",
    )
    parser.add_argument("terms", nargs="*", help="Path (add/remove) or query terms")

    # Ranking
    parser.add_argument(
        "-r", "--rank", dest="ranking", action="store_const",
        const=Ranking.RANK.value, help="Match by rank",
    )
    parser.add_argument(
        "-t", "--recent", dest="ranking", action="store_const",
        const=Ranking.TIME.value, help="Match by recent access",
    )

    # Flags
    parser.add_argument(
        "-l", "--list", action="store_true", help="List all matches with their scores"
    )
    parser.add_argument(
        "-c", "--current", action="store_true",
        help="Only match subdirectories of the current directory",
    )
    parser.add_argument(
        "--uncommon", action="store_true", default=None,
        help="Trim the best match towards the query instead of using a common root",
    )
    parser.add_argument(
        "--case", choices=[mode.value for mode in CaseMode], help="Case matching mode"
    )
    parser.add_argument("--data", help="Data file (default: ~/.z)")
    parser.add_argument(
        "--config", help=f"Path to config file (default: ~/{DEFAULT_CONFIG_FILENAME})"
    )
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    parser.add_argument("--version", action="version", version=f"frecent {__version__}")

    return parser.parse_intermixed_args(argv)


# Command Pattern Implementation
class Command:
    """Base command interface."""

    def execute(self, args: Any, store: FrecencyStore) -> int:
        """Execute the command and return the exit code."""
        raise NotImplementedError


class AddCommand(Command):
    """Record a visit."""

    def execute(self, args: Any, store: FrecencyStore) -> int:
        if not args.terms:
            log_error("Please provide a directory to add", quiet=args.quiet)
            return EXIT_STATUS

        path = canonical_path(" ".join(args.terms), store.settings.resolve_symlinks)
        status = store.add(path)
        return EXIT_OK if status in (Status.OK, Status.SKIPPED) else EXIT_STATUS


class RemoveCommand(Command):
    """Forget a directory (the current one by default)."""

    def execute(self, args: Any, store: FrecencyStore) -> int:
        raw = " ".join(args.terms) if args.terms else os.getcwd()
        path = canonical_path(raw, store.settings.resolve_symlinks)
        status = store.remove(path)

        if status is Status.NOT_FOUND:
            log_warning(f"{path} is not in the database", quiet=args.quiet)
        elif status is Status.NOT_OWNER:
            log_error(f"{store.data_file} is owned by another user", quiet=args.quiet)
        elif status is Status.LOCK_UNAVAILABLE:
            log_warning("Data file is busy; nothing removed", quiet=args.quiet)
        return EXIT_OK if status is Status.OK else EXIT_STATUS


class QueryCommand(Command):
    """Resolve a query to a directory, or list matches."""

    def execute(self, args: Any, store: FrecencyStore) -> int:
        terms = list(args.terms)

        # An accepted completion is already a directory
        if terms and not args.list and terms[-1].startswith("/") and os.path.isdir(terms[-1]):
            print(terms[-1])
            return EXIT_OK

        text = " ".join(terms)
        output = OutputFormat.LIST if args.list or not text else OutputFormat.SINGLE
        result = store.query(
            text,
            ranking=Ranking(args.ranking or Ranking.FRECENCY.value),
            anchor=os.getcwd() if args.current else None,
            output=output,
            uncommon=args.uncommon,
            case_mode=CaseMode(args.case) if args.case else None,
        )

        if result.status is Status.NOT_OWNER:
            log_error(f"{store.data_file} is owned by another user", quiet=args.quiet)
            return EXIT_STATUS
        if result.status is not Status.OK:
            return EXIT_STATUS

        for line in result.lines:
            print(line)
        return EXIT_OK


class CompleteCommand(Command):
    """Print completion candidates."""

    def execute(self, args: Any, store: FrecencyStore) -> int:
        result = store.complete(" ".join(args.terms))
        for line in result.lines:
            print(line)
        return EXIT_OK if result.status is Status.OK else EXIT_STATUS


class CommandFactory:
    """Factory for creating command instances."""

    _commands = {
        "add": AddCommand,
        "remove": RemoveCommand,
        "query": QueryCommand,
        "complete": CompleteCommand,
    }

    @classmethod
    def create_command(cls, command_name: str) -> Command:
        """Create a command instance."""
        command_class = cls._commands.get(command_name)
        if command_class is None:
            raise ValueError(f"Unknown command: {command_name}")
        return command_class()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point using Command pattern."""
    args = parse_args(argv)

    try:
        config = load_config(
            args.config or os.environ.get("FRECENT_CONFIG"), quiet=args.quiet
        )
        apply_env_overrides(config, os.environ)
        if args.data:
            config["store"]["data_file"] = args.data
        settings = Settings.from_config(config)

        command = CommandFactory.create_command(args.command)
        store = FrecencyStore(settings, quiet=args.quiet)
        exit_code = command.execute(args, store)
    except ValueError as e:
        log_error(str(e), quiet=args.quiet)
        sys.exit(EXIT_HARD_ERROR)
    except StoreError as e:
        log_error(str(e), e.__cause__, quiet=args.quiet)
        sys.exit(EXIT_HARD_ERROR)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
