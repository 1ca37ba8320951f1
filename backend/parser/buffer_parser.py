"""
Parse unsaved buffer content as a single-file package for live analysis.
"""
from __future__ import annotations
from pathlib import Path
from typing import Optional

from .repo_parser import Package
from .symbol_extractor import parse_go_source


def get_language_from_path(file_path: str) -> Optional[str]:
    if Path(file_path).suffix.lower() == ".go":
        return "go"
    return None


def parse_unsaved_buffer(buffer_content: str, file_path: str) -> Optional[Package]:
    if get_language_from_path(file_path) is None:
        return None
    sf = parse_go_source(buffer_content.encode("utf-8"), file_path)
    return Package(name=sf.package_name, directory=str(Path(file_path).parent), files=[sf])
