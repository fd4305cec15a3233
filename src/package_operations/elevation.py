"""Decide how a package operation is launched.

An operation either runs the package manager directly or through an
elevation tool (``gsudo``, ``pkexec``, ``sudo``). `ElevationResolver`
makes that decision from per-package overrides, the operation options and
the configuration, and returns a `LaunchTarget` for the process runner.
"""

import os
import shutil
import sys
from collections.abc import Sequence
from logging import getLogger
from pathlib import PureWindowsPath
from typing import NamedTuple

from qtpy.QtCore import QProcessEnvironment

from package_operations.base_package_manager import (
    InstallationOptions,
    Package,
)
from package_operations.config import Settings

log = getLogger(__name__)

ELEVATOR_ENV_VAR = 'PACKAGE_OPERATIONS_ELEVATOR'


class ElevationUnavailableError(RuntimeError):
    """No elevation tool could be found."""


class LaunchTarget(NamedTuple):
    program: str
    arguments: list[str]
    elevated: bool = False
    environment: QProcessEnvironment | None = None
    # cache the credentials of `program` before launching
    cache_admin_rights: bool = False


class ElevationTool:
    "Locate the elevation tool and its credential caching command"

    # tools that can keep credentials for the rest of the session
    CACHE_ARGUMENTS = {
        'gsudo': ['cache', 'on'],
        'sudo': ['-v'],
    }

    @classmethod
    def candidates(cls) -> tuple[str, ...]:
        if sys.platform == 'win32':
            return ('gsudo',)
        return ('pkexec', 'sudo')

    @classmethod
    def executable(cls) -> str | None:
        """Path to the elevation tool, if one is available."""
        if path := os.environ.get(ELEVATOR_ENV_VAR):
            return path
        for name in cls.candidates():
            if path := shutil.which(name):
                return path
        return None

    @classmethod
    def cache_arguments(cls, executable: str) -> list[str] | None:
        # handles both separators
        name = PureWindowsPath(executable).stem.lower()
        return cls.CACHE_ARGUMENTS.get(name)


class AdminRightsCache:
    """Elevation tools whose credentials are cached for this session.

    Only successful caching is remembered, so a declined prompt is asked
    again by the next elevated operation.
    """

    def __init__(self) -> None:
        self._cached: set[str] = set()

    def command(self, executable: str) -> list[str] | None:
        """Arguments caching the credentials of `executable`, if needed."""
        if executable in self._cached:
            return None
        args = ElevationTool.cache_arguments(executable)
        if args is None:
            log.debug('%s cannot cache admin rights', executable)
        return args

    def mark_cached(self, executable: str) -> None:
        self._cached.add(executable)

    def is_cached(self, executable: str) -> bool:
        return executable in self._cached

    def clear(self) -> None:
        self._cached.clear()


admin_rights = AdminRightsCache()


class ElevationResolver:
    """Resolve the `LaunchTarget` of package operations."""

    ELEVATION_TOOL_CLASS = ElevationTool

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def requires_elevation(
        self, package: Package, options: InstallationOptions
    ) -> bool:
        override = package.overridden_options.run_as_administrator
        if override is not None:
            return override
        if options.run_as_administrator:
            return True
        return self._settings.get(f'AlwaysElevate{package.manager.name}')

    def resolve(
        self,
        package: Package,
        options: InstallationOptions,
        operation_args: Sequence[str],
    ) -> LaunchTarget:
        manager = package.manager
        executable = manager.executable()
        arguments = [*manager.call_args(), *operation_args]
        environment = manager.environment()

        if not self.requires_elevation(package, options):
            return LaunchTarget(executable, arguments, False, environment)

        elevator = self.ELEVATION_TOOL_CLASS.executable()
        if elevator is None:
            raise ElevationUnavailableError(
                f'No elevation tool found to run {executable} as administrator'
            )

        cache = self._settings.get('DoCacheAdminRights') or (
            self._settings.get('DoCacheAdminRightsForBatches')
        )
        return LaunchTarget(
            elevator, [executable, *arguments], True, environment, cache
        )
