"""
Locate Go packages from command-line style patterns and parse their files.
A pattern is a .go file, a directory, or "dir/..." for every package below dir.
Files of one directory sharing a package clause form one compilation unit.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .symbol_extractor import SourceFile, parse_go_source

log = logging.getLogger(__name__)

# Directories the go tool never descends into
DEFAULT_IGNORE = {"vendor", "testdata", "node_modules"}

SUPPORTED_EXTENSIONS = {".go"}


@dataclass
class Package:
    name: str
    directory: str
    files: list[SourceFile] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.directory} ({self.name})" if self.name else self.directory


def should_ignore(path: Path, base: Path, ignore: set[str]) -> bool:
    rel = path.relative_to(base) if base in path.parents else Path(path.name)
    for part in rel.parts[:-1]:
        if part in ignore or part.startswith((".", "_")):
            return True
    if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        return True
    return path.name.startswith((".", "_"))


def _expand_pattern(pattern: str, ignore: set[str]) -> list[Path]:
    recursive = pattern == "..." or pattern.endswith("/...")
    root = Path((pattern[:-3] or ".") if recursive else pattern)
    if root.is_file():
        return [root.resolve()]
    if not root.is_dir():
        log.warning("No such file or directory: %s", pattern)
        return []
    root = root.resolve()
    candidates = root.rglob("*.go") if recursive else root.glob("*.go")
    return sorted(p for p in candidates if p.is_file() and not should_ignore(p, root, ignore))


def load_packages(
    patterns: Iterable[str],
    include_tests: bool = True,
    extra_ignore: Optional[Iterable[str]] = None,
) -> list[Package]:
    ignore = DEFAULT_IGNORE | set(extra_ignore or ())
    paths: list[Path] = []
    seen: set[Path] = set()
    for pattern in patterns:
        for p in _expand_pattern(pattern, ignore):
            if p not in seen:
                seen.add(p)
                paths.append(p)

    packages: dict[tuple[str, str], Package] = {}
    for path in sorted(paths):
        if not include_tests and path.name.endswith("_test.go"):
            continue
        try:
            source = path.read_bytes()
        except OSError as e:
            log.warning("Could not read %s: %s", path, e)
            continue
        sf = parse_go_source(source, str(path))
        key = (str(path.parent), sf.package_name)
        pkg = packages.get(key)
        if pkg is None:
            pkg = packages[key] = Package(name=sf.package_name, directory=str(path.parent))
        pkg.files.append(sf)

    log.info("Loaded %d Go files in %d packages", sum(len(p.files) for p in packages.values()), len(packages))
    return list(packages.values())
