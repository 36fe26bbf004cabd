"""
Structure lint tests.
Verify that the atomic component skeleton exists and follows conventions.
"""

from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
PACKAGE = PROJECT_ROOT / "redirect_manager"

COMPONENTS = ["redirects", "lifecycle", "analytics"]


class TestProjectStructure:
    """Verify project structure follows component conventions."""

    @pytest.mark.parametrize("component", COMPONENTS)
    def test_component_layout(self, component: str) -> None:
        """Each component has models, ports, an implementation and a public API."""
        base = PACKAGE / "components" / component
        for name in ("__init__.py", "models.py", "ports.py", "_impl.py"):
            assert (base / name).is_file(), f"Missing {name} in {component}"

    def test_adapters_directory_exists(self) -> None:
        assert (PACKAGE / "adapters").is_dir()
        assert (PACKAGE / "adapters" / "sqlite").is_dir()

    def test_migrations_are_ordered(self) -> None:
        files = sorted(p.name for p in (PROJECT_ROOT / "migrations").glob("*.sql"))
        assert files, "No migrations found"
        assert all(name[:4].isdigit() for name in files)

    def test_migrations_have_down_section(self) -> None:
        for path in (PROJECT_ROOT / "migrations").glob("*.sql"):
            assert "-- Down" in path.read_text(), f"{path.name} has no Down section"

    def test_rules_file_exists(self) -> None:
        assert (PROJECT_ROOT / "rules.yaml").is_file()

    def test_tests_structure_exists(self) -> None:
        assert (PROJECT_ROOT / "tests" / "unit").is_dir()
        assert (PROJECT_ROOT / "tests" / "integration").is_dir()

    def test_init_files_present(self) -> None:
        """Python packages must have __init__.py files."""
        packages = [
            "redirect_manager",
            "redirect_manager/components",
            "redirect_manager/adapters",
            "redirect_manager/adapters/sqlite",
            "redirect_manager/api",
            "redirect_manager/api/routes",
            "redirect_manager/rules",
        ]
        for pkg in packages:
            init_file = PROJECT_ROOT / pkg / "__init__.py"
            assert init_file.is_file(), f"Missing __init__.py in {pkg}"
