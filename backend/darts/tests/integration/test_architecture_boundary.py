"""Architectural boundary tests enforcing layer dependency rules.

Layer dependency direction (allowed):
  realtime → store → logic
  realtime → messaging → logic
  client → realtime, store, shared

Forbidden (runtime imports):
  logic → messaging, store, realtime
  messaging → store, realtime
  store → realtime
"""

import ast
from pathlib import Path

_DARTS_ROOT = Path(__file__).resolve().parents[2]


def _collect_runtime_import_targets(source_dir: Path) -> list[tuple[str, int, str]]:
    """Parse all .py files and return (filename, lineno, module) for runtime imports.

    Imports inside `if TYPE_CHECKING:` blocks are type-only and skipped.
    """
    results: list[tuple[str, int, str]] = []
    for py_file in source_dir.rglob("*.py"):
        tree = ast.parse(py_file.read_text(), filename=str(py_file))
        type_checking_ranges = _find_type_checking_ranges(tree)
        for node in ast.walk(tree):
            if not isinstance(node, (ast.Import, ast.ImportFrom)):
                continue
            if any(start <= node.lineno <= end for start, end in type_checking_ranges):
                continue
            if isinstance(node, ast.Import):
                results.extend((py_file.name, node.lineno, alias.name) for alias in node.names)
            elif node.module is not None:
                results.append((py_file.name, node.lineno, node.module))
    return results


def _find_type_checking_ranges(tree: ast.Module) -> list[tuple[int, int]]:
    ranges: list[tuple[int, int]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.If) and isinstance(node.test, ast.Name) and node.test.id == "TYPE_CHECKING":
            start = node.lineno
            end = max(child.lineno for child in ast.walk(node) if hasattr(child, "lineno"))
            ranges.append((start, end))
    return ranges


def _violations(layer: str, forbidden: tuple[str, ...]) -> list[str]:
    return [
        f"{name}:{lineno} {module}"
        for name, lineno, module in _collect_runtime_import_targets(_DARTS_ROOT / layer)
        if module.startswith(forbidden)
    ]


def test_logic_is_pure():
    """darts.logic must not reach the store, the feed or the realtime layer."""
    violations = _violations("logic", ("darts.messaging", "darts.store", "darts.realtime", "httpx"))
    assert violations == [], f"darts.logic imports outside its layer: {violations}"


def test_messaging_does_not_import_store_or_realtime():
    violations = _violations("messaging", ("darts.store", "darts.realtime"))
    assert violations == [], f"darts.messaging imports from upper layers: {violations}"


def test_store_does_not_import_realtime():
    violations = _violations("store", ("darts.realtime",))
    assert violations == [], f"darts.store imports from darts.realtime: {violations}"
