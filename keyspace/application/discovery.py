"""Discovery of repository classes in application packages.

Used to register invalidation owners for every document type an application
defines a repository for, without listing the repositories by hand.
"""

import importlib
import inspect
import pkgutil
from collections.abc import Iterable
from types import ModuleType
from typing import TypeVar

T = TypeVar("T")


def _should_skip_module(module_name: str) -> bool:
    """Test modules and private modules (other than `__init__`) are skipped."""
    return module_name.startswith("test_") or (
        module_name.startswith("_") and module_name != "__init__"
    )


class ModuleScanner:
    """Recursively import the public modules of a package.

    Examples:
        >>> scanner = ModuleScanner("myapp.documents")
        >>> [module.__name__ for module in scanner.scan_all_modules()]
        ['myapp.documents', 'myapp.documents.members', 'myapp.documents.orders']
    """

    def __init__(self, package_name: str):
        """
        Raises:
            ImportError: If the package cannot be imported.
        """
        self.package_name = package_name
        self.root_module = importlib.import_module(package_name)

    def scan_all_modules(self) -> Iterable[ModuleType]:
        yield self.root_module
        yield from self._scan_package_recursive(self.root_module)

    def _scan_package_recursive(self, package: ModuleType) -> Iterable[ModuleType]:
        if not hasattr(package, "__path__"):
            return

        for _importer, modname, is_pkg in pkgutil.iter_modules(
            package.__path__, prefix=f"{package.__name__}."
        ):
            if _should_skip_module(modname.split(".")[-1]):
                continue

            try:
                module = importlib.import_module(modname)
            except ImportError as e:
                msg = (
                    f"Failed to import module {modname} "
                    f"while scanning {package.__name__}. Error: {e}"
                )
                raise ImportError(msg) from e

            yield module
            if is_pkg:
                yield from self._scan_package_recursive(module)


class ClassScanner:
    """Extract classes from modules by type."""

    @staticmethod
    def find_subclasses(module: ModuleType, base_class: type[T]) -> Iterable[type[T]]:
        """Find the public, concrete subclasses of base_class defined in module.

        Classes a module merely imports are left to the module defining them,
        so scanning a whole package yields each class once.
        """
        for name, obj in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(obj, base_class)
                and obj is not base_class
                and not name.startswith("_")
                and not inspect.isabstract(obj)
                and obj.__module__ == module.__name__
            ):
                yield obj
