"""
Package state owned by the engine: presentation tags, the installed,
upgradable and available package registries, and ignored updates.

Operations never write to a package directly. They send commands to these
objects, which emit signals the presentation layer can subscribe to.
"""

from collections.abc import Iterator
from enum import StrEnum, auto
from logging import getLogger

from qtpy.QtCore import QObject, Signal

from package_operations.base_package_manager import Package

log = getLogger(__name__)


class PackageTag(StrEnum):
    "Presentation-facing state of a package"

    DEFAULT = auto()
    ON_QUEUE = auto()
    FAILED = auto()
    ALREADY_INSTALLED = auto()


class TagStore(QObject):
    """Tags of every package view known to the engine."""

    # package, tag
    tagChanged = Signal(object, object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._tags: dict[Package, PackageTag] = {}

    def set_tag(self, package: Package, tag: PackageTag) -> None:
        if tag == PackageTag.DEFAULT:
            self._tags.pop(package, None)
        else:
            self._tags[package] = tag
        log.debug('Tag of %s set to %s', package.id, tag)
        self.tagChanged.emit(package, tag)

    def tag(self, package: Package) -> PackageTag:
        return self._tags.get(package, PackageTag.DEFAULT)


class PackageRegistry(QObject):
    """A set of packages keyed by manager name and package id."""

    packageAdded = Signal(object)
    packageRemoved = Signal(object)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._packages: dict[tuple[str, str], Package] = {}

    def add(self, package: Package) -> bool:
        """Add `package` unless an equivalent one is already registered."""
        if package.key in self._packages:
            return False
        self._packages[package.key] = package
        self.packageAdded.emit(package)
        return True

    def remove(self, package: Package) -> bool:
        """Remove the package equivalent to `package`, if any."""
        removed = self._packages.pop(package.key, None)
        if removed is None:
            return False
        self.packageRemoved.emit(removed)
        return True

    def find(self, package: Package) -> Package | None:
        """Return the registered view of `package`, if any."""
        return self._packages.get(package.key)

    def __contains__(self, package: Package) -> bool:
        return package.key in self._packages

    def __iter__(self) -> Iterator[Package]:
        return iter(list(self._packages.values()))

    def __len__(self) -> int:
        return len(self._packages)


class IgnoredUpdatesDatabase:
    """Updates the user chose to ignore.

    Values are the ignored version, or ``'*'`` when every update of the
    package is ignored.
    """

    ALL_VERSIONS = '*'

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    @staticmethod
    def _key(package: Package) -> str:
        return f'{package.manager.name.lower()}\\{package.id}'

    def add(self, package: Package, version: str = ALL_VERSIONS) -> None:
        self._entries[self._key(package)] = version

    def get(self, package: Package) -> str | None:
        return self._entries.get(self._key(package))

    def remove(self, package: Package) -> bool:
        return self._entries.pop(self._key(package), None) is not None

    def __contains__(self, package: Package) -> bool:
        return self._key(package) in self._entries
