"""
Command-line entry points: ``arlen``, ``slen`` and ``lencheck --checker NAME``.

Usage examples
--------------
    slen ./...                 # every package below the current directory
    arlen cmd/tool pkg/x.go    # a package directory and a single file
    slen --format json ./...   # one JSON object per diagnostic

Exit codes
----------
    0   No diagnostics.
    1   One or more unchecked accesses were reported.
    2   A package could not be resolved, or no Go files matched.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence, TextIO

from parser.repo_parser import load_packages
from analyzer.length_checker import CHECKERS, Checker
from analyzer.runner import run_checker
from analyzer.type_checker import Diagnostic
from settings import get_settings

_log = logging.getLogger("lencheck")

EXIT_OK: int = 0
EXIT_DIAGNOSTICS: int = 1
EXIT_INFRA: int = 2


def _configure_logging(verbosity: int) -> None:
    """0 -> WARNING, 1 -> INFO, 2+ -> DEBUG."""
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _emit_diagnostics(diagnostics: list[Diagnostic], fmt: str, stream: TextIO) -> None:
    for diag in diagnostics:
        if fmt == "json":
            stream.write(json.dumps(diag.to_dict()) + "\n")
        else:
            stream.write(str(diag) + "\n")


def build_parser(checker: Optional[Checker] = None) -> argparse.ArgumentParser:
    prog = checker.name if checker is not None else "lencheck"
    ap = argparse.ArgumentParser(
        prog=prog,
        description=checker.doc if checker is not None else
        "verifies if slice/array len was checked before accessing it",
    )
    if checker is None:
        default = get_settings().checker
        ap.add_argument("--checker", choices=sorted(CHECKERS),
                        default=default if default in CHECKERS else "slen",
                        help="checker variant naming the diagnostics")
    ap.add_argument("patterns", nargs="+", metavar="PATTERN",
                    help="Go files, package directories, or dir/... for recursive discovery")
    ap.add_argument("--format", choices=("text", "json"), default="text")
    ap.add_argument("--no-tests", dest="include_tests", action="store_false", default=None,
                    help="skip _test.go files")
    ap.add_argument("-v", "--verbose", action="count", default=0)
    return ap


def main(argv: Optional[Sequence[str]] = None, checker: Optional[Checker] = None,
         stream: Optional[TextIO] = None) -> int:
    args = build_parser(checker).parse_args(argv)
    _configure_logging(args.verbose)
    settings = get_settings()
    if checker is None:
        checker = CHECKERS[args.checker]
    include_tests = settings.include_tests if args.include_tests is None else args.include_tests
    out = stream if stream is not None else sys.stdout

    packages = load_packages(args.patterns, include_tests=include_tests, extra_ignore=settings.ignore_dirs)
    if not packages:
        _log.error("no Go files matched %s", " ".join(args.patterns))
        return EXIT_INFRA

    failed = False
    reported = 0
    for result in run_checker(packages, checker):
        if result.error is not None:
            # already logged by the runner
            failed = True
            continue
        _emit_diagnostics(result.diagnostics, args.format, out)
        reported += len(result.diagnostics)

    if failed:
        return EXIT_INFRA
    return EXIT_DIAGNOSTICS if reported else EXIT_OK


def arlen_main() -> None:
    sys.exit(main(checker=CHECKERS["arlen"]))


def slen_main() -> None:
    sys.exit(main(checker=CHECKERS["slen"]))


def lencheck_main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    lencheck_main()
