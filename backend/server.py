"""
Local analysis server.
Exposes an HTTP API for editor integrations: analyze an unsaved buffer,
analyze every package of a repository, list the available checkers.
"""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Run from backend directory so these imports work
from settings import get_settings
from parser.buffer_parser import parse_unsaved_buffer
from parser.repo_parser import load_packages
from analyzer.length_checker import CHECKERS, Checker
from analyzer.runner import check_package, run_checker

settings = get_settings()
logging.basicConfig(level=settings.log_level)
log = logging.getLogger(__name__)


app = FastAPI(title="lencheck Analysis Server", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root() -> dict:
    """lencheck API. Use /docs for Swagger or /health to check server."""
    return {"name": "lencheck Analysis Server", "docs": "/docs", "health": "/health"}


class AnalyzeRequest(BaseModel):
    content: str
    file_path: str
    checker: Optional[str] = None


class AnalyzeRepoRequest(BaseModel):
    repo_path: str
    checker: Optional[str] = None
    include_tests: Optional[bool] = None


def _get_checker(name: Optional[str]) -> Checker:
    name = (name or settings.checker).lower()
    checker = CHECKERS.get(name)
    if checker is None:
        raise HTTPException(status_code=400, detail=f"Unknown checker: {name!r}")
    return checker


@app.post("/analyze")
def analyze(request: AnalyzeRequest) -> dict:
    """Analyze an unsaved buffer as a single-file package. Returns diagnostics."""
    checker = _get_checker(request.checker)
    package = parse_unsaved_buffer(request.content, request.file_path)
    if package is None:
        raise HTTPException(status_code=400, detail="Only .go files can be analyzed")
    result = check_package(package, checker)
    if result.error is not None:
        raise HTTPException(status_code=422, detail=str(result.error))
    log.info("Analyze %s: %d diagnostics", request.file_path, len(result.diagnostics))
    return {
        "diagnostics": [d.to_dict() for d in result.diagnostics],
        "file": request.file_path,
    }


@app.post("/analyze_repo")
def analyze_repo(request: AnalyzeRepoRequest) -> dict:
    """Analyze every Go package below repo_path."""
    repo_path = Path(request.repo_path).resolve()
    if not repo_path.is_dir():
        raise HTTPException(status_code=400, detail=f"Invalid repo_path: {request.repo_path!r}")
    checker = _get_checker(request.checker)
    include_tests = settings.include_tests if request.include_tests is None else request.include_tests
    packages = load_packages([f"{repo_path}/..."], include_tests=include_tests,
                             extra_ignore=settings.ignore_dirs)
    diagnostics: list[dict] = []
    errors: list[dict] = []
    for result in run_checker(packages, checker):
        if result.error is not None:
            errors.append({"package": result.package.label, "error": str(result.error)})
            continue
        diagnostics.extend(d.to_dict() for d in result.diagnostics)
    log.info("Analyze repo %s: %d packages, %d diagnostics, %d errors",
             repo_path, len(packages), len(diagnostics), len(errors))
    return {
        "diagnostics": diagnostics,
        "errors": errors,
        "package_count": len(packages),
        "repo_path": str(repo_path),
    }


@app.get("/rules")
def get_rules() -> dict:
    """Return the available checker definitions."""
    return {"rules": [
        {
            "name": c.name,
            "doc": c.doc,
            "code": c.code,
            "message": f"{c.name}: check <slice|array> <name> length before accessing",
        }
        for c in CHECKERS.values()
    ]}


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
