# Parser package
from .symbol_extractor import SourceFile, Symbol, extract_package_symbols, parse_go_source
from .repo_parser import Package, load_packages

__all__ = [
    'SourceFile',
    'Symbol',
    'extract_package_symbols',
    'parse_go_source',
    'Package',
    'load_packages',
]
