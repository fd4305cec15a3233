import shutil
import time

import pytest

from package_operations.base_package_manager import (
    InstallationOptions,
    OperationType,
    OverriddenOptions,
    Package,
)
from package_operations.base_qt_process_operation import OperationStatus
from package_operations.elevation import (
    ELEVATOR_ENV_VAR,
    ElevationTool,
    admin_rights,
)
from package_operations.qt_package_operations import (
    InstallPackageOperation,
    UninstallPackageOperation,
    UpdatePackageOperation,
)
from package_operations.qt_package_registry import PackageTag


def _run(qtbot, operation, signal='succeeded'):
    with qtbot.waitSignal(getattr(operation, signal), timeout=10_000):
        operation.start()
    return operation


def test_install_success(qtbot, context, manager, package):
    manager.output = ['Successfully installed']
    operation = _run(qtbot, InstallPackageOperation(package, context))

    assert manager.classified == [(('Successfully installed',), 0)]
    assert operation.status == OperationStatus.SUCCEEDED
    assert context.tags.tag(package) == PackageTag.ALREADY_INSTALLED
    assert context.installed.find(package) is package


def test_install_failure(qtbot, context, manager, package):
    manager.exit_code = 1
    manager.output = ['Error: access denied']
    context.upgradable.add(package)

    operation = _run(qtbot, InstallPackageOperation(package, context), 'failed')

    assert manager.classified == [(('Error: access denied',), 1)]
    assert operation.status == OperationStatus.FAILED
    assert context.tags.tag(package) == PackageTag.FAILED
    assert len(context.installed) == 0
    assert package in context.upgradable


@pytest.mark.parametrize(
    ('ignored_version', 'cleared'), [('1.5', True), ('*', False)]
)
def test_update_clears_ignored_update(
    qtbot, context, package, ignored_version, cleared
):
    context.ignored_updates.add(package, ignored_version)

    _run(qtbot, UpdatePackageOperation(package, context))

    assert (package not in context.ignored_updates) is cleared


def test_update_success(qtbot, context, manager, package):
    installed_view = Package('some-package', 'Some Package', '1.0', manager)
    available_view = Package('some-package', 'Some Package', '2.0', manager)
    context.installed.add(installed_view)
    context.available.add(available_view)
    context.upgradable.add(package)
    context.tags.set_tag(installed_view, PackageTag.FAILED)

    _run(qtbot, UpdatePackageOperation(package, context))

    assert context.tags.tag(package) == PackageTag.DEFAULT
    assert context.tags.tag(installed_view) == PackageTag.DEFAULT
    assert context.tags.tag(available_view) == PackageTag.ALREADY_INSTALLED
    assert package not in context.upgradable
    assert installed_view in context.installed


def test_update_failure(qtbot, context, manager, package):
    manager.exit_code = 2
    context.upgradable.add(package)
    context.ignored_updates.add(package, '1.5')

    _run(qtbot, UpdatePackageOperation(package, context), 'failed')

    assert context.tags.tag(package) == PackageTag.FAILED
    assert package in context.upgradable
    assert context.ignored_updates.get(package) == '1.5'


def test_install_then_uninstall(qtbot, context, manager, package):
    available_view = Package('some-package', 'Some Package', '2.0', manager)
    context.available.add(available_view)

    _run(qtbot, InstallPackageOperation(package, context))
    context.upgradable.add(package)
    context.tags.set_tag(available_view, PackageTag.ALREADY_INSTALLED)
    _run(qtbot, UninstallPackageOperation(package, context))

    assert package not in context.installed
    assert package not in context.upgradable
    assert context.tags.tag(package) == PackageTag.DEFAULT
    assert context.tags.tag(available_view) == PackageTag.DEFAULT


def test_uninstall_failure(qtbot, context, manager, package):
    manager.exit_code = 1
    context.installed.add(package)

    _run(qtbot, UninstallPackageOperation(package, context), 'failed')

    assert context.tags.tag(package) == PackageTag.FAILED
    assert package in context.installed


def test_cancel_running_operation(qtbot, context, manager, package):
    manager.output = ['sleep:30']
    operation = InstallPackageOperation(package, context)

    with qtbot.waitSignal(operation.started, timeout=10_000):
        operation.start()
    assert context.tags.tag(package) == PackageTag.ON_QUEUE

    with qtbot.waitSignal(operation.cancelled, timeout=10_000):
        operation.cancel()

    assert operation._runner.waitForFinished(10_000)
    qtbot.wait(100)
    assert manager.classified == []
    assert operation.status == OperationStatus.CANCELLED
    assert context.tags.tag(package) == PackageTag.DEFAULT
    assert len(context.installed) == 0


def test_cancel_queued_operation(qtbot, context, manager, package):
    manager.output = ['sleep:30']
    other = Package('other', 'Other', '1.0', manager)
    running = InstallPackageOperation(other, context)
    queued = UninstallPackageOperation(package, context)

    running.start()
    queued.start()
    assert context.tags.tag(package) == PackageTag.ON_QUEUE

    queued.cancel()

    assert queued.status == OperationStatus.CANCELLED
    assert queued.launch_target is None
    assert context.tags.tag(package) == PackageTag.DEFAULT


@pytest.mark.parametrize(
    'key', ['AllowParallelInstalls', 'AllowParallelInstallsForManagerScript']
)
def test_parallel_installs_skip_queue(qtbot, context, settings, manager, key):
    settings.set(key, True)
    manager.output = ['sleep:30']
    first = InstallPackageOperation(
        Package('first', 'First', '1.0', manager), context
    )
    second = InstallPackageOperation(
        Package('second', 'Second', '1.0', manager), context
    )
    events = []
    second.enqueued.connect(lambda op: events.append('enqueued'))
    second.statusChanged.connect(events.append)

    first.start()
    second.start()

    assert first.status == OperationStatus.RUNNING
    assert second.status == OperationStatus.RUNNING
    assert context.queue.pending() == ()
    assert events == ['enqueued', OperationStatus.RUNNING]


def test_parallel_installs_for_other_manager(qtbot, context, settings, manager):
    settings.set('AllowParallelInstallsForManagerPip', True)
    manager.output = ['sleep:30']
    first = InstallPackageOperation(
        Package('first', 'First', '1.0', manager), context
    )
    second = InstallPackageOperation(
        Package('second', 'Second', '1.0', manager), context
    )

    first.start()
    second.start()

    assert second.status == OperationStatus.QUEUED


def test_new_shortcuts_are_removed(
    qtbot, context, settings, manager, package, desktop
):
    settings.set('AskToDeleteNewDesktopShortcuts', True)
    existing = desktop / 'existing.desktop'
    existing.touch()
    created = desktop / 'created.desktop'
    manager.output = [f'touch:{created}']

    _run(qtbot, InstallPackageOperation(package, context))

    assert existing.exists()
    assert not created.exists()


def test_shortcuts_kept_when_disabled(qtbot, context, manager, package, desktop):
    created = desktop / 'created.lnk'
    manager.output = [f'touch:{created}']

    _run(qtbot, UpdatePackageOperation(package, context))

    assert created.exists()


def test_side_effect_failures_are_isolated(
    qtbot, context, package, monkeypatch, caplog
):
    def _broken(package):
        raise RuntimeError('registry unavailable')

    monkeypatch.setattr(context.installed, 'add', _broken)
    operation = _run(qtbot, InstallPackageOperation(package, context))

    assert operation.status == OperationStatus.SUCCEEDED
    assert context.tags.tag(package) == PackageTag.ALREADY_INSTALLED
    assert 'registry unavailable' in caplog.text


def test_missing_elevation_tool_fails(
    qtbot, context, manager, monkeypatch
):
    monkeypatch.setattr(ElevationTool, 'executable', classmethod(lambda cls: None))
    package = Package(
        'some-package',
        'Some Package',
        '1.0',
        manager,
        overridden_options=OverriddenOptions(run_as_administrator=True),
    )

    operation = _run(qtbot, InstallPackageOperation(package, context), 'failed')

    assert manager.classified == []
    assert 'No elevation tool found' in operation.output[0]
    assert context.tags.tag(package) == PackageTag.FAILED


@pytest.mark.skipif(shutil.which('env') is None, reason='env is not available')
def test_elevated_operation(qtbot, context, manager, package, monkeypatch):
    monkeypatch.setenv(ELEVATOR_ENV_VAR, shutil.which('env'))
    manager.output = ['Successfully installed']
    options = InstallationOptions(run_as_administrator=True)

    operation = _run(qtbot, InstallPackageOperation(package, context, options))

    assert operation.launch_target.elevated
    assert operation.launch_target.program == shutil.which('env')
    assert operation.output == ['Successfully installed']


def test_metadata(context, package):
    install = InstallPackageOperation(package, context)
    update = UpdatePackageOperation(package, context)
    uninstall = UninstallPackageOperation(package, context)

    assert install.role == OperationType.INSTALL
    assert install.metadata.title == 'Some Package Installation'
    assert update.metadata.status == (
        'Some Package is being updated to version 2.0'
    )
    assert uninstall.metadata.failure_message == (
        'Some Package could not be uninstalled'
    )
    assert 'Package=some-package with Manager=Script' in (
        uninstall.metadata.operation_information
    )
    assert str(install) == 'Some Package Installation'


def test_create_retry(qtbot, context, manager, package):
    manager.exit_code = 1
    operation = _run(qtbot, InstallPackageOperation(package, context), 'failed')

    options = InstallationOptions(scope='user')
    retry = operation.create_retry(options)

    assert isinstance(retry, InstallPackageOperation)
    assert retry is not operation
    assert retry.status == OperationStatus.QUEUED
    assert retry.options is options
    assert retry.package is package

    manager.exit_code = 0
    _run(qtbot, retry)
    assert context.tags.tag(package) == PackageTag.ALREADY_INSTALLED


def test_cancel_before_start_resets_tag(qtbot, context, manager, package):
    operation = InstallPackageOperation(package, context)
    context.tags.set_tag(package, PackageTag.FAILED)

    operation.cancel()
    operation.start()
    qtbot.wait(200)

    assert operation.status == OperationStatus.CANCELLED
    assert manager.classified == []
    assert context.tags.tag(package) == PackageTag.DEFAULT
    assert len(context.installed) == 0


def test_cancel_while_preparing(qtbot, context, manager, package):
    operation = InstallPackageOperation(package, context)

    def _cancel_when_running(tagged, tag):
        if operation.status == OperationStatus.RUNNING:
            operation.cancel()

    context.tags.tagChanged.connect(_cancel_when_running)
    operation.start()
    qtbot.wait(200)

    assert operation.status == OperationStatus.CANCELLED
    assert operation.launch_target is None
    assert not operation._runner.isRunning()
    assert manager.classified == []
    assert context.tags.tag(package) == PackageTag.DEFAULT


@pytest.fixture
def env_elevator(monkeypatch, settings):
    path = shutil.which('env')
    if path is None:
        pytest.skip('env is not available')
    monkeypatch.setenv(ELEVATOR_ENV_VAR, path)
    settings.set('DoCacheAdminRights', True)
    return path


@pytest.mark.parametrize(
    ('command', 'cached'), [('true', True), ('false', False)]
)
def test_admin_rights_cached_before_launch(
    qtbot,
    context,
    manager,
    package,
    monkeypatch,
    env_elevator,
    command,
    cached,
):
    monkeypatch.setitem(ElevationTool.CACHE_ARGUMENTS, 'env', [command])
    manager.output = ['Successfully installed']
    options = InstallationOptions(run_as_administrator=True)

    operation = _run(qtbot, InstallPackageOperation(package, context, options))

    assert operation._cache_runner is not None
    assert operation.output == ['Successfully installed']
    assert admin_rights.is_cached(env_elevator) is cached

    retry = _run(qtbot, operation.create_retry())
    assert (retry._cache_runner is None) is cached


def test_admin_rights_caching_does_not_block(
    qtbot, context, manager, package, monkeypatch, env_elevator
):
    monkeypatch.setitem(ElevationTool.CACHE_ARGUMENTS, 'env', ['sleep', '2'])
    options = InstallationOptions(run_as_administrator=True)
    operation = InstallPackageOperation(package, context, options)

    started = time.monotonic()
    operation.start()

    assert time.monotonic() - started < 1
    assert operation.status == OperationStatus.RUNNING
    assert operation._cache_runner.isRunning()
    assert not operation._runner.isRunning()

    with qtbot.waitSignal(operation.cancelled, timeout=10_000):
        operation.cancel()
    assert operation._cache_runner.waitForFinished(10_000)
    assert not operation._runner.isRunning()
    assert not admin_rights.is_cached(env_elevator)
