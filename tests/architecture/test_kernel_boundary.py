"""
Kernel Boundary & Invariants Contract.

Tests that enforce the ledger kernel's architectural boundaries:

1. completion_ledger/** may NOT import ledger_config or scripts.
   The kernel never depends upward; settings reach it through bridges.

2. completion_ledger/domain/** may not import SQLAlchemy, the ORM models,
   the stores or the services at runtime.

3. The ledger invariants declaration is complete and non-empty.

These tests read source code via AST -- they cannot break anything.
"""

import ast
import glob
from pathlib import Path

from completion_ledger.invariants import (
    ALL_LEDGER_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    LedgerInvariant,
)


def _python_files(root: str) -> list[str]:
    return sorted(glob.glob(f"{root}/**/*.py", recursive=True))


def _runtime_imports(filepath: str) -> list[tuple[int, str]]:
    """(line, module) for every import not guarded by ``if TYPE_CHECKING``."""
    tree = ast.parse(Path(filepath).read_text(), filename=filepath)
    guarded: set[int] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.If) and getattr(node.test, "id", None) == "TYPE_CHECKING":
            for child in ast.walk(node):
                if isinstance(child, (ast.Import, ast.ImportFrom)):
                    guarded.add(child.lineno)

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if getattr(node, "lineno", None) in guarded:
            continue
        if isinstance(node, ast.Import):
            results.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(root: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for filepath in _python_files(root):
        for lineno, module in _runtime_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {filepath}:{lineno} imports '{module}'")
    return found


class TestKernelNoUpwardDependencies:
    """completion_ledger/** must not import ledger_config or scripts."""

    def test_kernel_does_not_import_forbidden_packages(self):
        violations = _violations("completion_ledger", FORBIDDEN_KERNEL_IMPORTS)
        assert not violations, (
            "Kernel boundary violation -- completion_ledger/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )


class TestDomainPurity:
    """Pure rules never reach for the database."""

    FORBIDDEN_MODULES = (
        "sqlalchemy",
        "psycopg2",
        "completion_ledger.models",
        "completion_ledger.stores",
        "completion_ledger.services",
    )

    def test_domain_no_orm_imports(self):
        violations = _violations("completion_ledger/domain", self.FORBIDDEN_MODULES)
        assert not violations, (
            "Domain purity violation -- completion_ledger/domain/** must not "
            "import ORM/DB packages at runtime:\n" + "\n".join(violations)
        )


class TestLedgerInvariantsDeclaration:
    """The ledger invariants contract must be declared and complete."""

    def test_invariants_declared(self):
        assert len(ALL_LEDGER_INVARIANTS) == len(LedgerInvariant)
        assert LedgerInvariant.BUDGET_CONSERVATION in ALL_LEDGER_INVARIANTS
        assert LedgerInvariant.AT_MOST_ONCE in ALL_LEDGER_INVARIANTS

    def test_every_invariant_documented(self):
        source = Path("completion_ledger/invariants.py").read_text()
        tree = ast.parse(source)
        [enum_class] = [
            n for n in tree.body if isinstance(n, ast.ClassDef) and n.name == "LedgerInvariant"
        ]
        documented = set()
        body = enum_class.body
        for node, following in zip(body, body[1:]):
            if (
                isinstance(node, ast.Assign)
                and isinstance(following, ast.Expr)
                and isinstance(following.value, ast.Constant)
                and isinstance(following.value.value, str)
            ):
                documented.add(node.targets[0].id)
        assert documented == {member.name for member in LedgerInvariant}
