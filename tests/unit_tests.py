"""
Unit tests for the Go parser, type oracle and length checkers.
"""
import io
import json
import re
import sys
from pathlib import Path

# Add backend to path when running from project root
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "backend"))

from parser.go_types import ContainerKind
from parser.symbol_extractor import (
    extract_symbols_from_source,
    parse_go_source,
)
from parser.buffer_parser import parse_unsaved_buffer
from parser.repo_parser import load_packages
from analyzer.guard_registry import GuardRegistry
from analyzer.length_checker import ARLEN, SLEN
from analyzer.runner import check_package, run_checker
from analyzer.type_checker import ResolutionError, VariableIdentity, check_types

TESTDATA = ROOT / "tests" / "testdata" / "src"
WANT_RE = re.compile(r"//\s*want\s+(.*)$")


def _diagnose(code: str, checker=SLEN):
    package = parse_unsaved_buffer(code, "scenario.go")
    result = check_package(package, checker)
    assert result.error is None, f"unexpected resolution error: {result.error}"
    return result.diagnostics


def _expected_wants(packages) -> dict:
    expected: dict = {}
    for pkg in packages:
        for sf in pkg.files:
            for lineno, line in enumerate(sf.source.decode("utf-8").splitlines(), start=1):
                m = WANT_RE.search(line)
                if m:
                    expected[(sf.path, lineno)] = re.findall(r"`([^`]*)`", m.group(1))
    return expected


def _check_testdata(name: str, checker=SLEN):
    """Every `// want` line gets exactly the listed diagnostics, no other line gets any."""
    packages = load_packages([str(TESTDATA / name)])
    assert packages, f"no Go files in {name}"
    got: dict = {}
    for result in run_checker(packages, checker):
        assert result.error is None, f"unexpected resolution error: {result.error}"
        for d in result.diagnostics:
            got.setdefault((d.file, d.line), []).append(d.message)

    for key, patterns in _expected_wants(packages).items():
        messages = got.pop(key, [])
        assert len(messages) == len(patterns), f"{key}: expected {patterns}, got {messages}"
        for pattern in patterns:
            match = next((m for m in messages if re.search(pattern, m)), None)
            assert match is not None, f"{key}: no diagnostic matching {pattern!r} in {messages}"
            messages.remove(match)
    assert not got, f"unexpected diagnostics: {got}"


def _find_identifier(sf, name: str, line: int):
    stack = [sf.root]
    while stack:
        node = stack.pop()
        if node.type == "identifier" and sf.text(node) == name and node.start_point[0] + 1 == line:
            return node
        stack.extend(node.children)
    raise AssertionError(f"identifier {name!r} not found on line {line}")


# ---- fixtures with `// want` annotations ----

def test_simple_testdata():
    _check_testdata("main")


def test_slen_testdata():
    _check_testdata("slen")


def test_loop_guards():
    _check_testdata("loops")


def test_access_sites():
    _check_testdata("access")


def test_arlen_variant():
    _check_testdata("arrays", ARLEN)


def test_clean_package_has_no_diagnostics():
    _check_testdata("clean")


# ---- concrete scenarios ----

def test_unguarded_index_reported():
    diag = _diagnose("package main\n\nfunc main() {\n\ta := []int{}\n\t_ = a[0]\n}\n")
    assert len(diag) == 1
    assert diag[0].message == "slen: check slice a length before accessing"
    assert diag[0].line == 5
    assert diag[0].column == 6
    assert diag[0].severity == "WARNING"
    assert diag[0].code == "SLEN_UNCHECKED_LENGTH"


def test_early_return_guard():
    code = """package main

func main() {
	a := []int{}
	if len(a) == 0 {
		return
	}
	_ = a[0]
}
"""
    assert _diagnose(code) == []


def test_guard_inside_branch():
    code = """package main

func main() {
	a := []int{1}
	if len(a) > 0 {
		_ = a[0]
	}
}
"""
    assert _diagnose(code) == []


def test_range_guards_container():
    code = """package main

func main() {
	abc := []int{1, 2, 3}
	for i := range abc {
		_ = abc[i]
	}
	_ = abc[0]
}
"""
    assert _diagnose(code) == []


def test_slice_expression_reported():
    diag = _diagnose("package main\n\nfunc main() {\n\ts := []int{1, 2, 3}\n\t_ = s[0:1]\n}\n")
    assert [d.message for d in diag] == ["slen: check slice s length before accessing"]


def test_guard_does_not_cross_function_boundary():
    code = """package main

func do2(a []int) {
	_ = a[0]
}

func main() {
	a := []int{1}
	if len(a) > 0 {
		do2(a)
	}
}
"""
    diag = _diagnose(code)
    assert len(diag) == 1
    assert diag[0].line == 4


def test_any_operator_registers_guard():
    code = """package main

func main() {
	a := []int{1}
	if len(a) < 1 {
		println("bad")
	}
	_ = a[0]
}
"""
    assert _diagnose(code) == []


def test_index_guard_also_covers_slicing():
    code = """package main

func main() {
	a := []int{1, 2}
	if len(a) > 1 {
		_ = a[1]
	}
	_ = a[:1]
	_ = a[0:1:2]
}
"""
    assert _diagnose(code) == []


def test_diagnostics_follow_traversal_order():
    code = """package main

func main() {
	a := []int{}
	b := [2]int{}
	_ = b[0]
	_ = a[0]
	_ = a[1]
}
"""
    diag = _diagnose(code)
    assert [(d.line, d.message) for d in diag] == [
        (6, "slen: check array b length before accessing"),
        (7, "slen: check slice a length before accessing"),
        (8, "slen: check slice a length before accessing"),
    ]


def test_arlen_names_the_tool():
    diag = _diagnose("package main\n\nfunc main() {\n\tvar a [2]int\n\t_ = a[0]\n}\n", ARLEN)
    assert diag[0].message == "arlen: check array a length before accessing"
    assert diag[0].code == "ARLEN_UNCHECKED_LENGTH"


def test_method_length_accessor_not_a_guard():
    code = """package main

type list []int

func (l list) Len() int { return len(l) }

func main() {
	xs := []int{1}
	l := list(xs)
	if l.Len() > 0 {
		_ = xs[0]
	}
}
"""
    diag = _diagnose(code)
    assert [d.message for d in diag] == ["slen: check slice xs length before accessing"]


def test_package_level_initializer_checked():
    code = "package main\n\nvar xs = []int{1}\n\nvar first = xs[0]\n"
    diag = _diagnose(code)
    assert [(d.line, d.message) for d in diag] == [(5, "slen: check slice xs length before accessing")]


# ---- resolution failures ----

def test_resolution_failure_is_fatal():
    packages = load_packages([str(TESTDATA / "broken")])
    results = run_checker(packages, SLEN)
    assert len(results) == 1
    assert results[0].diagnostics == []
    assert isinstance(results[0].error, ResolutionError)
    assert "syntax error" in str(results[0].error)


def test_check_types_requires_files():
    try:
        check_types([])
    except ResolutionError as e:
        assert "no Go files" in str(e)
    else:
        raise AssertionError("expected ResolutionError")


def test_long_operator_chain_is_analyzed():
    terms = " + ".join(['"x"'] * 3000)
    code = (
        f"package main\n\nvar s = {terms}\n\n"
        f"func main() {{\n\tt := {terms}\n\ta := []int{{}}\n\t_, _ = t, a[0]\n}}\n"
    )
    diag = _diagnose(code)
    assert [(d.line, d.message) for d in diag] == [(8, "slen: check slice a length before accessing")]


def test_recursion_failure_stays_in_its_package(monkeypatch):
    import analyzer.runner as runner

    def too_deep(*args, **kwargs):
        raise RecursionError("maximum recursion depth exceeded")

    monkeypatch.setattr(runner, "check_length_guards", too_deep)
    packages = load_packages([str(TESTDATA / "clean"), str(TESTDATA / "slen")])
    results = run_checker(packages, SLEN)
    assert len(results) == 2
    assert all(isinstance(r.error, ResolutionError) for r in results)
    assert "nesting too deep" in str(results[0].error)


# ---- guard registry ----

def test_guard_registry_monotonic():
    registry = GuardRegistry()
    assert VariableIdentity(1) not in registry
    registry.register(VariableIdentity(1))
    registry.register(VariableIdentity(1))
    assert VariableIdentity(1) in registry
    assert VariableIdentity(2) not in registry
    assert len(registry) == 1


# ---- symbols and the type oracle ----

def test_go_symbol_extraction():
    code = b"""package demo

import "fmt"

const limit = 3

type pair struct{ vals []int }

var names []string

func first(xs []int, rest ...string) (int, error) {
	arr := [3]int{}
	fmt.Println(arr, rest)
	return xs[0], nil
}
"""
    symbols = extract_symbols_from_source(code, "demo.go")
    by_name = {s.name: s for s in symbols}
    assert by_name["fmt"].kind == "package"
    assert by_name["limit"].kind == "constant"
    assert by_name["pair"].kind == "type"
    assert by_name["names"].type.kind == ContainerKind.SLICE
    assert by_name["first"].kind == "function"
    assert [t.kind for t in by_name["first"].results] == [ContainerKind.OTHER, ContainerKind.OTHER]
    assert by_name["xs"].kind == "parameter"
    assert by_name["rest"].type.kind == ContainerKind.SLICE
    assert by_name["arr"].type.kind == ContainerKind.ARRAY
    assert by_name["arr"].scope == "first"
    assert by_name["arr"].line == 12


def test_identity_distinguishes_same_named_variables():
    code = b"""package main

func f() {
	a := []int{}
	_ = a
}

func g() {
	a := [1]int{}
	_ = a
}
"""
    sf = parse_go_source(code, "ids.go")
    oracle = check_types([sf])
    f_use = _find_identifier(sf, "a", 5)
    f_decl = _find_identifier(sf, "a", 4)
    g_use = _find_identifier(sf, "a", 10)
    assert oracle.identity(sf.path, f_use) == oracle.identity(sf.path, f_decl)
    assert oracle.identity(sf.path, f_use) != oracle.identity(sf.path, g_use)
    assert oracle.resolve(sf.path, f_use) == ContainerKind.SLICE
    assert oracle.resolve(sf.path, g_use) == ContainerKind.ARRAY


def test_oracle_unknown_for_unresolved_identifiers():
    code = b"package main\n\nimport \"os\"\n\nfunc main() {\n\t_ = os.Args[0]\n\t_ = missing[0]\n}\n"
    sf = parse_go_source(code, "unknown.go")
    oracle = check_types([sf])
    missing = _find_identifier(sf, "missing", 7)
    assert oracle.resolve(sf.path, missing) == ContainerKind.UNKNOWN
    assert oracle.identity(sf.path, missing) is None
    assert oracle.resolve(sf.path, _find_identifier(sf, "os", 6)) == ContainerKind.OTHER


def test_redeclaration_reuses_existing_variable():
    code = b"""package main

func f() ([]int, error) { return nil, nil }

func main() {
	xs, err := f()
	ys, err := f()
	_, _, _ = xs, ys, err
}
"""
    sf = parse_go_source(code, "redecl.go")
    oracle = check_types([sf])
    first = _find_identifier(sf, "err", 6)
    second = _find_identifier(sf, "err", 7)
    assert oracle.identity(sf.path, first) == oracle.identity(sf.path, second)
    assert oracle.resolve(sf.path, _find_identifier(sf, "ys", 7)) == ContainerKind.SLICE


def test_local_type_declarations_follow_scope():
    code = b"""package main

type Ints = []int

func f() {
	type row = []int
	var r row
	var p Ints
	type Ints [2]string
	var q Ints
	_, _, _ = r, p, q
}

func g() {
	var r Ints
	_ = r
}
"""
    sf = parse_go_source(code, "local.go")
    oracle = check_types([sf])
    assert oracle.resolve(sf.path, _find_identifier(sf, "r", 7)) == ContainerKind.SLICE
    assert oracle.resolve(sf.path, _find_identifier(sf, "p", 8)) == ContainerKind.SLICE
    assert oracle.resolve(sf.path, _find_identifier(sf, "q", 10)) == ContainerKind.OTHER
    assert oracle.resolve(sf.path, _find_identifier(sf, "r", 15)) == ContainerKind.SLICE


def test_symbols_across_package_files(tmp_path):
    (tmp_path / "a.go").write_text("package p\n\nfunc items() []string { return nil }\n")
    (tmp_path / "b.go").write_text(
        "package p\n\nfunc use() string {\n\tit := items()\n\treturn it[0]\n}\n"
    )
    packages = load_packages([str(tmp_path)])
    assert len(packages) == 1
    assert len(packages[0].files) == 2
    result = check_package(packages[0], SLEN)
    assert [d.message for d in result.diagnostics] == ["slen: check slice it length before accessing"]
    assert result.diagnostics[0].file.endswith("b.go")


# ---- package loading ----

def test_load_packages_recursive_skips_ignored_dirs(tmp_path):
    (tmp_path / "cmd").mkdir()
    (tmp_path / "cmd" / "main.go").write_text("package main\n")
    (tmp_path / "vendor").mkdir()
    (tmp_path / "vendor" / "dep.go").write_text("package dep\n")
    (tmp_path / ".hidden").mkdir()
    (tmp_path / ".hidden" / "x.go").write_text("package x\n")
    (tmp_path / "lib.go").write_text("package lib\n")
    (tmp_path / "lib_test.go").write_text("package lib\n")
    (tmp_path / "notes.txt").write_text("not go\n")

    packages = load_packages([f"{tmp_path}/..."])
    names = sorted(p.name for p in packages)
    assert names == ["lib", "main"]
    lib = next(p for p in packages if p.name == "lib")
    assert len(lib.files) == 2

    packages = load_packages([f"{tmp_path}/..."], include_tests=False)
    lib = next(p for p in packages if p.name == "lib")
    assert [Path(f.path).name for f in lib.files] == ["lib.go"]


def test_load_packages_single_file_and_missing_path(tmp_path):
    (tmp_path / "one.go").write_text("package one\n")
    (tmp_path / "two.go").write_text("package one\n")
    packages = load_packages([str(tmp_path / "one.go"), str(tmp_path / "nope")])
    assert len(packages) == 1
    assert [Path(f.path).name for f in packages[0].files] == ["one.go"]


def test_buffer_parser_rejects_non_go():
    assert parse_unsaved_buffer("print('x')", "script.py") is None
    package = parse_unsaved_buffer("package buf\n", "dir/buf.go")
    assert package.name == "buf"
    assert len(package.files) == 1


def test_demo_repo():
    demo = ROOT / "demo_repo"
    packages = load_packages([f"{demo}/..."])
    results = run_checker(packages, SLEN)
    messages = [d.message for r in results for d in r.diagnostics]
    assert all(r.error is None for r in results)
    assert "slen: check slice scores length before accessing" in messages
    assert not any(" names " in m for m in messages)


# ---- command line ----

def test_cli_reports_and_exits_nonzero():
    from cli import EXIT_DIAGNOSTICS, main

    out = io.StringIO()
    code = main([str(TESTDATA / "slen")], checker=SLEN, stream=out)
    assert code == EXIT_DIAGNOSTICS
    lines = out.getvalue().splitlines()
    assert len(lines) == 1
    assert lines[0].endswith(":19:6: slen: check slice arr1 length before accessing")


def test_cli_clean_package_exits_zero():
    from cli import EXIT_OK, main

    out = io.StringIO()
    assert main([str(TESTDATA / "clean")], checker=ARLEN, stream=out) == EXIT_OK
    assert out.getvalue() == ""


def test_cli_json_format_and_checker_flag():
    from cli import main

    out = io.StringIO()
    main(["--checker", "arlen", "--format", "json", str(TESTDATA / "arrays")], stream=out)
    records = [json.loads(line) for line in out.getvalue().splitlines()]
    assert len(records) == 4
    assert all(r["code"] == "ARLEN_UNCHECKED_LENGTH" for r in records)
    assert records[0]["message"] == "arlen: check array lookup length before accessing"


def test_cli_resolution_failure_exit_code():
    from cli import EXIT_INFRA, main

    out = io.StringIO()
    assert main([str(TESTDATA / "broken")], checker=SLEN, stream=out) == EXIT_INFRA
    assert out.getvalue() == ""


def test_cli_reports_resolution_failure_once(caplog, capsys):
    import logging
    from cli import main

    with caplog.at_level(logging.ERROR):
        main([str(TESTDATA / "broken")], checker=SLEN, stream=io.StringIO())
    failures = [r for r in caplog.records if "syntax error" in r.getMessage()]
    assert len(failures) == 1
    assert "syntax error" not in capsys.readouterr().err


def test_settings_from_environment(tmp_path, monkeypatch):
    from cli import EXIT_DIAGNOSTICS, EXIT_OK, main
    from settings import get_settings

    (tmp_path / "lib.go").write_text("package lib\n")
    (tmp_path / "lib_test.go").write_text("package lib\n\nfunc f(xs []int) int {\n\treturn xs[0]\n}\n")
    (tmp_path / "gen").mkdir()
    (tmp_path / "gen" / "gen.go").write_text("package gen\n\nfunc g(xs []int) int {\n\treturn xs[0]\n}\n")

    monkeypatch.setenv("LENCHECK_INCLUDE_TESTS", "0")
    monkeypatch.setenv("LENCHECK_IGNORE_DIRS", "gen, build")
    settings = get_settings()
    assert settings.include_tests is False
    assert settings.ignore_dirs == ["gen", "build"]
    assert main([f"{tmp_path}/..."], checker=SLEN, stream=io.StringIO()) == EXIT_OK

    monkeypatch.setenv("LENCHECK_INCLUDE_TESTS", "yes")
    out = io.StringIO()
    assert main([f"{tmp_path}/..."], checker=SLEN, stream=out) == EXIT_DIAGNOSTICS
    assert "lib_test.go" in out.getvalue()
    assert "gen.go" not in out.getvalue()


def test_cli_no_matching_files(tmp_path):
    from cli import EXIT_INFRA, main

    assert main([str(tmp_path)], checker=SLEN, stream=io.StringIO()) == EXIT_INFRA


# ---- HTTP server ----

def test_server_analyze_buffer():
    from fastapi.testclient import TestClient
    from server import app

    client = TestClient(app)
    assert client.get("/health").json() == {"status": "ok"}

    resp = client.post("/analyze", json={
        "content": "package main\n\nfunc main() {\n\ta := []int{}\n\t_ = a[0]\n}\n",
        "file_path": "main.go",
        "checker": "slen",
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["file"] == "main.go"
    assert body["diagnostics"] == [{
        "file": "main.go", "line": 5, "column": 6, "severity": "WARNING",
        "message": "slen: check slice a length before accessing",
        "code": "SLEN_UNCHECKED_LENGTH",
    }]


def test_server_errors():
    from fastapi.testclient import TestClient
    from server import app

    client = TestClient(app)
    resp = client.post("/analyze", json={"content": "package main\nfunc (", "file_path": "bad.go"})
    assert resp.status_code == 422
    assert "syntax error" in resp.json()["detail"]

    resp = client.post("/analyze", json={"content": "x = 1", "file_path": "x.py"})
    assert resp.status_code == 400

    resp = client.post("/analyze", json={"content": "package main\n", "file_path": "m.go", "checker": "nope"})
    assert resp.status_code == 400

    resp = client.post("/analyze_repo", json={"repo_path": str(ROOT / "does-not-exist")})
    assert resp.status_code == 400


def test_server_analyze_repo_and_rules():
    from fastapi.testclient import TestClient
    from server import app

    client = TestClient(app)
    resp = client.post("/analyze_repo", json={"repo_path": str(TESTDATA), "checker": "slen"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["package_count"] == 7
    assert len(body["errors"]) == 1
    assert "syntax error" in body["errors"][0]["error"]
    assert any(d["message"] == "slen: check slice arr1 length before accessing" for d in body["diagnostics"])

    rules = client.get("/rules").json()["rules"]
    assert sorted(r["name"] for r in rules) == ["arlen", "slen"]
