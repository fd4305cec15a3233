"""
Install, update and uninstall operations.

`PackageOperation` connects the generic `AbstractProcessOperation` to a
package manager adapter: the adapter builds the arguments and classifies
the result, the `ElevationResolver` decides how the manager is launched,
and the subclasses apply the side effects of the outcome to the package
state held by an `OperationContext`.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path

from qtpy.QtCore import QObject

from package_operations.base_package_manager import (
    InstallationOptions,
    OperationType,
    OperationVerdict,
    Package,
)
from package_operations.base_qt_process_operation import (
    AbstractProcessOperation,
    OperationQueue,
)
from package_operations.config import Settings
from package_operations.elevation import ElevationResolver, LaunchTarget
from package_operations.qt_package_registry import (
    IgnoredUpdatesDatabase,
    PackageRegistry,
    PackageTag,
    TagStore,
)
from package_operations.shortcuts import DesktopShortcuts

log = getLogger(__name__)


@dataclass
class OperationContext:
    """Collaborators shared by every package operation."""

    settings: Settings = field(default_factory=Settings)
    queue: OperationQueue = field(default_factory=OperationQueue)
    tags: TagStore = field(default_factory=TagStore)
    installed: PackageRegistry = field(default_factory=PackageRegistry)
    upgradable: PackageRegistry = field(default_factory=PackageRegistry)
    available: PackageRegistry = field(default_factory=PackageRegistry)
    ignored_updates: IgnoredUpdatesDatabase = field(
        default_factory=IgnoredUpdatesDatabase
    )
    shortcuts: DesktopShortcuts = field(default_factory=DesktopShortcuts)
    elevation: ElevationResolver | None = None

    def __post_init__(self) -> None:
        if self.elevation is None:
            self.elevation = ElevationResolver(self.settings)


class PackageOperation(AbstractProcessOperation):
    """Base class of the operations acting on a single package."""

    ROLE: OperationType

    def __init__(
        self,
        package: Package,
        context: OperationContext,
        options: InstallationOptions | None = None,
        *,
        queue_enabled: bool = True,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(
            context.queue, queue_enabled=queue_enabled, parent=parent
        )
        self.package = package
        self.options = options or InstallationOptions()
        self.role = self.ROLE
        self.context = context

        self._shortcuts_before: set[Path] = set()
        if context.settings.get('AskToDeleteNewDesktopShortcuts'):
            self._shortcuts_before = context.shortcuts.snapshot()

        self._initialize()

    def create_retry(
        self, options: InstallationOptions | None = None
    ) -> 'PackageOperation':
        """Build a new operation repeating this one, optionally with other options."""
        return type(self)(
            self.package,
            self.context,
            options or self.options,
            queue_enabled=self.queue_enabled,
            parent=self.parent(),
        )

    # abstract method
    def _initialize(self) -> None:
        "Fill in the operation metadata"
        raise NotImplementedError

    def _operation_information(self) -> str:
        return (
            f'Package {self.role.value} operation for Package='
            f'{self.package.id} with Manager={self.package.manager.name}\n'
            f'Installation options: {self.options}'
        )

    def _set_tag(self, package: Package | None, tag: PackageTag) -> None:
        if package is not None:
            self.context.tags.set_tag(package, tag)

    def _on_enqueued(self) -> None:
        self._set_tag(self.package, PackageTag.ON_QUEUE)

    def _skips_queue(self) -> bool:
        if super()._skips_queue():
            return True
        settings = self.context.settings
        if settings.get('AllowParallelInstalls') or settings.get(
            f'AllowParallelInstallsForManager{self.package.manager.name}'
        ):
            log.debug('Parallel installs are allowed. Skipping queue check')
            return True
        return False

    def _on_cancelled(self) -> None:
        self._set_tag(self.package, PackageTag.DEFAULT)

    def _prepare_process(self) -> LaunchTarget:
        self._set_tag(self.package, PackageTag.ON_QUEUE)
        operation_args = self.package.manager.arguments(
            self.package, self.options, self.role
        )
        return self.context.elevation.resolve(
            self.package, self.options, operation_args
        )

    def _get_verdict(
        self, exit_code: int, output: Sequence[str]
    ) -> OperationVerdict:
        return self.package.manager.classify(
            self.package, self.role, output, exit_code
        )

    def _handle_failure(self) -> None:
        self._set_tag(self.package, PackageTag.FAILED)

    def _remove_new_shortcuts(self) -> None:
        if self.context.settings.get('AskToDeleteNewDesktopShortcuts'):
            self.context.shortcuts.reconcile(self._shortcuts_before)


class InstallPackageOperation(PackageOperation):
    ROLE = OperationType.INSTALL

    def _initialize(self) -> None:
        name = self.package.name
        self.metadata.operation_information = self._operation_information()
        self.metadata.title = f'{name} Installation'
        self.metadata.status = f'{name} is being installed'
        self.metadata.success_title = 'Installation succeeded'
        self.metadata.success_message = f'{name} was installed successfully'
        self.metadata.failure_title = 'Installation failed'
        self.metadata.failure_message = f'{name} could not be installed'

    def _handle_success(self) -> None:
        self._run_side_effects(
            lambda: self._set_tag(self.package, PackageTag.ALREADY_INSTALLED),
            lambda: self.context.installed.add(self.package),
            self._remove_new_shortcuts,
        )


class UpdatePackageOperation(PackageOperation):
    ROLE = OperationType.UPDATE

    def _initialize(self) -> None:
        name = self.package.name
        self.metadata.operation_information = self._operation_information()
        self.metadata.title = f'{name} Update'
        self.metadata.status = (
            f'{name} is being updated to version {self.package.new_version}'
        )
        self.metadata.success_title = 'Update succeeded'
        self.metadata.success_message = f'{name} was updated successfully'
        self.metadata.failure_title = 'Update failed'
        self.metadata.failure_message = f'{name} could not be updated'

    def _update_tags(self) -> None:
        context = self.context
        self._set_tag(self.package, PackageTag.DEFAULT)
        self._set_tag(context.installed.find(self.package), PackageTag.DEFAULT)
        self._set_tag(
            context.available.find(self.package),
            PackageTag.ALREADY_INSTALLED,
        )

    def _clear_ignored_update(self) -> None:
        ignored_updates = self.context.ignored_updates
        version = ignored_updates.get(self.package)
        if version is not None and version != ignored_updates.ALL_VERSIONS:
            ignored_updates.remove(self.package)

    def _handle_success(self) -> None:
        self._run_side_effects(
            self._update_tags,
            lambda: self.context.upgradable.remove(self.package),
            self._clear_ignored_update,
            self._remove_new_shortcuts,
        )


class UninstallPackageOperation(PackageOperation):
    ROLE = OperationType.UNINSTALL

    def _initialize(self) -> None:
        name = self.package.name
        self.metadata.operation_information = self._operation_information()
        self.metadata.title = f'{name} Uninstall'
        self.metadata.status = f'{name} is being uninstalled'
        self.metadata.success_title = 'Uninstall succeeded'
        self.metadata.success_message = f'{name} was uninstalled successfully'
        self.metadata.failure_title = 'Uninstall failed'
        self.metadata.failure_message = f'{name} could not be uninstalled'

    def _update_tags(self) -> None:
        self._set_tag(self.package, PackageTag.DEFAULT)
        self._set_tag(
            self.context.available.find(self.package), PackageTag.DEFAULT
        )

    def _handle_success(self) -> None:
        self._run_side_effects(
            self._update_tags,
            lambda: self.context.upgradable.remove(self.package),
            lambda: self.context.installed.remove(self.package),
        )
