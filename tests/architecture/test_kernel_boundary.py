"""
Kernel Boundary & Invariants Contract.

Tests that enforce the kernel's architectural boundaries:

1. inspex_kernel/** may NOT import inspex_services or inspex_config.
   The kernel never depends upward.

2. inspex_config never imports ORM models, services or SQLAlchemy, and
   inspex_kernel/domain holds pure values with no persistence imports.

3. The kernel invariants declaration is complete and non-empty.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

from inspex_kernel.invariants import (
    ALL_KERNEL_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    KernelInvariant,
)

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    try:
        tree = ast.parse(filepath.read_text(), filename=str(filepath))
    except (SyntaxError, UnicodeDecodeError):
        return []

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module:
                results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Test: Kernel has no upward dependencies
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:
    """inspex_kernel/** must not import inspex_services or inspex_config."""

    def test_kernel_does_not_import_forbidden_packages(self):
        violations = _violations("inspex_kernel", FORBIDDEN_KERNEL_IMPORTS)
        assert not violations, (
            "Kernel boundary violation: inspex_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )

    def test_kernel_files_exist(self):
        assert len(_python_files("inspex_kernel")) > 10


class TestConfigIsolation:
    """inspex_config produces plain values; it never touches ORM or services."""

    def test_config_does_not_import_models_or_services(self):
        violations = _violations(
            "inspex_config",
            ("inspex_kernel.models", "inspex_kernel.services", "inspex_services", "sqlalchemy"),
        )
        assert not violations, "\n".join(violations)


class TestDomainPurity:
    """inspex_kernel/domain holds pure values: no ORM, no sessions."""

    def test_domain_has_no_sqlalchemy(self):
        violations = _violations(
            "inspex_kernel/domain",
            ("sqlalchemy", "inspex_kernel.models", "inspex_kernel.services", "inspex_kernel.db"),
        )
        assert not violations, "\n".join(violations)


# ---------------------------------------------------------------------------
# Test: Invariant declaration
# ---------------------------------------------------------------------------

class TestInvariantDeclaration:

    def test_all_invariants_declared(self):
        assert ALL_KERNEL_INVARIANTS
        assert set(ALL_KERNEL_INVARIANTS) == set(KernelInvariant)

    def test_each_invariant_has_description(self):
        for invariant in KernelInvariant:
            assert invariant.value.strip(), invariant.name
