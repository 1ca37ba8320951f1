"""
Runs a length checker over loaded packages.
Each package is resolved independently; a package that fails resolution
reports its error and no diagnostics, the others are still checked.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from parser.repo_parser import Package
from analyzer.length_checker import Checker, SLEN, check_length_guards
from analyzer.type_checker import Diagnostic, ResolutionError, check_types

log = logging.getLogger(__name__)


@dataclass
class PackageResult:
    package: Package
    diagnostics: list[Diagnostic] = field(default_factory=list)
    error: Optional[ResolutionError] = None


def check_package(package: Package, checker: Checker = SLEN) -> PackageResult:
    try:
        oracle = check_types(package.files)
        diagnostics = check_length_guards(package.files, oracle, checker)
    except RecursionError:
        e = ResolutionError("nesting too deep to analyze")
        log.error("cannot check package %s: %s", package.label, e)
        return PackageResult(package=package, error=e)
    except ResolutionError as e:
        log.error("cannot check package %s: %s", package.label, e)
        return PackageResult(package=package, error=e)
    log.info("Checked %s: %d files, %d diagnostics", package.label, len(package.files), len(diagnostics))
    return PackageResult(package=package, diagnostics=diagnostics)


def run_checker(packages: Iterable[Package], checker: Checker = SLEN) -> list[PackageResult]:
    return [check_package(p, checker) for p in packages]
