"""Unit tests for module and class discovery utilities."""

import pytest

from keyspace.application.discovery import ClassScanner, ModuleScanner
from keyspace.application.repository import DocumentRepository
from tests.fixtures.test_app.documents import member
from tests.fixtures.test_app.documents.member import MemberRepository


def test_scanner_imports_package():
    """Test that scanner can import a package."""
    scanner = ModuleScanner("tests.fixtures.test_app")
    assert scanner.root_module is not None
    assert scanner.package_name == "tests.fixtures.test_app"


def test_scanner_fails_on_missing_package():
    """Test that scanner fails on non-existent package."""
    with pytest.raises(ImportError):
        ModuleScanner("non.existent.package")


def test_scan_all_modules_includes_nested_packages():
    """Test that nested packages are discovered recursively."""
    scanner = ModuleScanner("tests.fixtures.test_app")
    module_names = [module.__name__ for module in scanner.scan_all_modules()]

    assert module_names[0] == "tests.fixtures.test_app"
    assert "tests.fixtures.test_app.documents.member" in module_names
    assert "tests.fixtures.test_app.documents.nested.order" in module_names


def test_scanning_a_module_yields_only_that_module():
    scanner = ModuleScanner("tests.fixtures.test_app.documents.member")
    assert [module.__name__ for module in scanner.scan_all_modules()] == [
        "tests.fixtures.test_app.documents.member"
    ]


def test_find_subclasses_skips_private_and_imported_classes():
    """Test that only public classes defined in the module are returned."""
    classes = list(ClassScanner.find_subclasses(member, DocumentRepository))

    assert classes == [MemberRepository]


def test_find_subclasses_skips_base_class():
    from keyspace.application.repository import repository

    assert list(ClassScanner.find_subclasses(repository, DocumentRepository)) == []
