"""Include/exclude glob sets over relative POSIX paths."""

import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator


def _split(path: str) -> list[str]:
    return [part for part in path.replace("\\", "/").split("/") if part and part != "."]


def _segment_matches(name: str, pattern: str, dot: bool) -> bool:
    if name.startswith(".") and not dot and not pattern.startswith("."):
        return False
    return fnmatch.fnmatchcase(name, pattern)


def _match_parts(parts: list[str], patterns: list[str], dot: bool) -> bool:
    if not patterns:
        return not parts

    head, rest = patterns[0], patterns[1:]
    if head == "**":
        # Zero segments, or consume one and stay on "**"
        if _match_parts(parts, rest, dot):
            return True
        return bool(parts) and (dot or not parts[0].startswith(".")) and _match_parts(parts[1:], patterns, dot)

    if not parts or not _segment_matches(parts[0], head, dot):
        return False
    return _match_parts(parts[1:], rest, dot)


def glob_match(path: str, pattern: str, dot: bool = False) -> bool:
    """
    Match a relative path against a glob pattern.

    ``**`` spans any number of directories (including none); every other
    segment uses fnmatch rules. Names starting with ``.`` only match when
    ``dot`` is set or the pattern segment itself starts with ``.``.
    """
    return _match_parts(_split(path), _split(pattern), dot)


@dataclass(frozen=True)
class GlobSpec:
    """
    A pair of pattern sets deciding which relative paths are synchronized.

    A path matches iff it matches at least one include pattern and no
    exclude pattern.
    """
    include: frozenset[str]
    exclude: frozenset[str] = field(default_factory=frozenset)
    dot: bool = False

    @classmethod
    def from_patterns(
        cls,
        include: Iterable[str],
        exclude: Iterable[str] = (),
        dot: bool = False,
    ) -> "GlobSpec":
        return cls(frozenset(include), frozenset(exclude), dot)

    def matches(self, rel_path: str) -> bool:
        if not any(glob_match(rel_path, p, self.dot) for p in self.include):
            return False
        return not any(glob_match(rel_path, p, self.dot) for p in self.exclude)

    def iter_matching(self, root: Path) -> Iterator[str]:
        """Yield relative paths of regular files under ``root`` that match."""
        root = Path(root)
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            base = Path(dirpath).relative_to(root)
            for name in sorted(filenames):
                full = Path(dirpath) / name
                # Symlinks are skipped, only regular files are mirrored
                if full.is_symlink() or not full.is_file():
                    continue
                rel = (base / name).as_posix()
                if self.matches(rel):
                    yield rel
