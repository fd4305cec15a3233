import sys

import pytest

from package_operations.base_package_manager import (
    AbstractPackageManager,
    OperationVerdict,
    Package,
)
from package_operations.config import Settings
from package_operations.elevation import admin_rights
from package_operations.qt_package_operations import OperationContext
from package_operations.shortcuts import DesktopShortcuts

# Child process used instead of a real package manager.
# usage: -c SCRIPT <exit code> [line | sleep:<seconds> | touch:<path>]...
SCRIPT = """
import sys
import time

for arg in sys.argv[2:]:
    if arg.startswith('sleep:'):
        time.sleep(float(arg[6:]))
    elif arg.startswith('touch:'):
        open(arg[6:], 'w').close()
    else:
        print(arg, flush=True)
sys.exit(int(sys.argv[1]))
"""


def script_arguments(exit_code=0, *lines) -> list[str]:
    return ['-c', SCRIPT, str(exit_code), *lines]


class ScriptPackageManager(AbstractPackageManager):
    """Package manager running `SCRIPT`, recording classifications."""

    name = 'Script'

    def __init__(self, exit_code=0, output=()):
        self.exit_code = exit_code
        self.output = list(output)
        self.classified = []

    def executable(self):
        return sys.executable

    def call_args(self):
        return ['-c', SCRIPT]

    def arguments(self, package, options, action):
        return [str(self.exit_code), *self.output]

    def classify(self, package, action, output, exit_code):
        self.classified.append((tuple(output), exit_code))
        if exit_code == 0:
            return OperationVerdict.SUCCESS
        return OperationVerdict.FAILURE

    def available(self):
        return True


@pytest.fixture(autouse=True)
def _clear_admin_rights_cache():
    admin_rights.clear()
    yield
    admin_rights.clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(tmp_path / 'package-operations.ini')


@pytest.fixture
def desktop(tmp_path):
    path = tmp_path / 'Desktop'
    path.mkdir()
    return path


@pytest.fixture
def context(qapp, settings, desktop) -> OperationContext:
    context = OperationContext(
        settings=settings, shortcuts=DesktopShortcuts([desktop])
    )
    yield context
    running = context.queue.running()
    context.queue.cancel_all()
    for operation in running:
        operation._runner.waitForFinished(5000)


@pytest.fixture
def manager() -> ScriptPackageManager:
    return ScriptPackageManager()


@pytest.fixture
def package(manager) -> Package:
    return Package(
        id='some-package',
        name='Some Package',
        version='1.0',
        manager=manager,
        new_version='2.0',
    )
