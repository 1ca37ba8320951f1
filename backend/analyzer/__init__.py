# Analyzer package
from .type_checker import Diagnostic, ResolutionError, TypeOracle, check_types
from .length_checker import ARLEN, CHECKERS, SLEN, Checker, check_length_guards
from .runner import PackageResult, run_checker

__all__ = [
    'Diagnostic',
    'ResolutionError',
    'TypeOracle',
    'check_types',
    'ARLEN',
    'CHECKERS',
    'SLEN',
    'Checker',
    'check_length_guards',
    'PackageResult',
    'run_checker',
]
