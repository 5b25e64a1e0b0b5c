"""Source tree walking and per-file fact extraction."""

from __future__ import annotations

import fnmatch
import logging
import os
from collections import deque
from collections.abc import Iterable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from practice_audit.facts import FactSet, unparseable
from practice_audit.php import Deadline, ParseError, ScanTimeout
from practice_audit.source_parser import parse_source

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE = ("*.php",)
DEFAULT_EXCLUDE = (
    ".git/*",
    "bootstrap/cache/*",
    "node_modules/*",
    "storage/*",
    "vendor/*",
)
BINARY_SNIFF_BYTES = 8192
WINDOW_PER_WORKER = 4


@dataclass(frozen=True, slots=True)
class SourceFile:
    """A file selected for scanning."""

    path: Path
    relative: str


@dataclass(slots=True)
class Scanner:
    """Walks a tree in lexical path order and yields fact sets per unit.

    Parsing is dispatched to a bounded thread pool when ``jobs`` is greater
    than one. Results are consumed in submission order, so the emitted
    sequence is identical for any worker count.
    """

    include: tuple[str, ...] = DEFAULT_INCLUDE
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE
    jobs: int | None = None
    timeout: float | None = None
    files_scanned: int = field(default=0, init=False)

    def scan(self, root: Path) -> Iterator[FactSet]:
        files = iter_source_files(root, include=self.include, exclude=self.exclude)
        workers = self.jobs or os.cpu_count() or 1
        if workers <= 1:
            for source in files:
                self.files_scanned += 1
                yield from read_unit(source, timeout=self.timeout)
            return

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="practice-audit") as pool:
            pending: deque[Future[list[FactSet]]] = deque()
            try:
                for source in files:
                    self.files_scanned += 1
                    pending.append(pool.submit(read_unit, source, timeout=self.timeout))
                    if len(pending) >= workers * WINDOW_PER_WORKER:
                        yield from pending.popleft().result()
                while pending:
                    yield from pending.popleft().result()
            finally:
                for future in pending:
                    future.cancel()


def scan(
    root: Path,
    include: Iterable[str] = DEFAULT_INCLUDE,
    exclude: Iterable[str] = DEFAULT_EXCLUDE,
    *,
    jobs: int | None = None,
    timeout: float | None = None,
) -> Iterator[FactSet]:
    """Lazily yield fact sets for every selected file under ``root``."""
    scanner = Scanner(include=tuple(include), exclude=tuple(exclude), jobs=jobs, timeout=timeout)
    return scanner.scan(root)


def iter_source_files(
    root: Path,
    *,
    include: tuple[str, ...] = DEFAULT_INCLUDE,
    exclude: tuple[str, ...] = DEFAULT_EXCLUDE,
) -> Iterator[SourceFile]:
    """Yield selected regular files in lexical order of their relative POSIX path."""
    yield from _walk(root.resolve(), "", include, exclude, frozenset())


def read_unit(source: SourceFile, timeout: float | None = None) -> list[FactSet]:
    """Read and parse one file; failures become a single unparseable fact set."""
    deadline = Deadline.after(timeout)
    try:
        data = source.path.read_bytes()
    except OSError as exc:
        logger.warning("Cannot read %s: %s", source.relative, exc)
        return [unparseable(source.relative, f"unreadable: {exc.strerror or exc}")]

    if b"\0" in data[:BINARY_SNIFF_BYTES]:
        logger.debug("Skipping binary file %s", source.relative)
        return []

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        return [unparseable(source.relative, f"not valid UTF-8 at byte {exc.start}")]

    try:
        return parse_source(source.relative, text, deadline)
    except ScanTimeout:
        logger.warning("Timed out parsing %s", source.relative)
        return [unparseable(source.relative, f"timed out after {timeout}s")]
    except ParseError as exc:
        logger.info("Cannot parse %s: %s", source.relative, exc)
        return [unparseable(source.relative, str(exc))]
    except Exception as exc:
        logger.exception("Unexpected failure parsing %s", source.relative)
        return [unparseable(source.relative, f"{exc.__class__.__name__}: {exc}")]


def _walk(
    directory: Path,
    prefix: str,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    ancestors: frozenset[tuple[int, int]],
) -> Iterator[SourceFile]:
    try:
        stat = directory.stat()
        entries = list(os.scandir(directory))
    except OSError as exc:
        logger.warning("Cannot list %s: %s", prefix or ".", exc)
        return

    identity = (stat.st_dev, stat.st_ino)
    if identity in ancestors:
        logger.info("Skipping symlink cycle at %s", prefix.rstrip("/"))
        return
    ancestors = ancestors | {identity}

    keyed: list[tuple[str, str, os.DirEntry[str], bool]] = []
    for entry in entries:
        relative = f"{prefix}{entry.name}"
        try:
            is_dir = entry.is_dir()
        except OSError:
            is_dir = False
        # Directories sort as "name/" so the walk matches plain string order of full paths.
        keyed.append((f"{relative}/" if is_dir else relative, relative, entry, is_dir))

    for _, relative, entry, is_dir in sorted(keyed, key=lambda item: item[0]):
        if is_dir:
            if _matches_any(relative, exclude) or _matches_any(f"{relative}/", exclude):
                continue
            yield from _walk(Path(entry.path), f"{relative}/", include, exclude, ancestors)
            continue
        if not _is_selected(relative, include=include, exclude=exclude):
            continue
        try:
            if not entry.is_file():
                continue
        except OSError:
            continue
        yield SourceFile(path=Path(entry.path), relative=relative)


def _is_selected(path: str, *, include: tuple[str, ...], exclude: tuple[str, ...]) -> bool:
    if include and not _matches_any(path, include):
        return False
    return not _matches_any(path, exclude)


def _matches_any(path: str, patterns: tuple[str, ...]) -> bool:
    return any(fnmatch.fnmatchcase(path, pattern) for pattern in patterns)
