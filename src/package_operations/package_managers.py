"""
Reference package manager adapters.

`PipPackageManager` and `CondaPackageManager` build the command line for
each `OperationType` and classify the result of the child process.
"""

import os
import sys
from collections.abc import Sequence
from logging import getLogger
from pathlib import Path
from subprocess import run
from tempfile import gettempdir

from qtpy.QtCore import QProcessEnvironment

from package_operations.base_package_manager import (
    AbstractPackageManager,
    InstallationOptions,
    OperationType,
    OperationVerdict,
    Package,
)

log = getLogger(__name__)


class PipPackageManager(AbstractPackageManager):
    """Pip adapter.

    This class is used to install, update and uninstall packages using pip
    from the running interpreter.
    """

    name = 'Pip'

    def executable(self) -> str:
        return sys.executable

    def call_args(self) -> list[str]:
        return ['-m', 'pip']

    def available(self) -> bool:
        """Check if pip is available."""
        process = run(
            [self.executable(), *self.call_args(), '--version'],
            capture_output=True,
        )
        return process.returncode == 0

    def arguments(
        self,
        package: Package,
        options: InstallationOptions,
        action: OperationType,
    ) -> list[str]:
        """Compose arguments for the pip command."""
        if action == OperationType.INSTALL:
            args = ['install']
            spec = package.id
            if options.version:
                spec = f'{package.id}=={options.version}'

        elif action == OperationType.UPDATE:
            args = ['install', '--upgrade']
            spec = package.id
            if package.new_version:
                spec = f'{package.id}=={package.new_version}'

        elif action == OperationType.UNINSTALL:
            args = ['uninstall', '-y']
            spec = package.id

        else:
            raise ValueError(f"Action '{action}' not supported!")

        if options.scope == 'user' and action != OperationType.UNINSTALL:
            args.append('--user')

        if log.getEffectiveLevel() < 30:  # DEBUG and INFO level
            args.append('-vvv')

        if options.location is not None and action != OperationType.UNINSTALL:
            args.extend(['--prefix', str(options.location)])

        if package.source and action != OperationType.UNINSTALL:
            args.extend(['--extra-index-url', package.source])

        return [*args, *options.custom_parameters, spec]

    def classify(
        self,
        package: Package,
        action: OperationType,
        output: Sequence[str],
        exit_code: int,
    ) -> OperationVerdict:
        if exit_code == 0:
            return OperationVerdict.SUCCESS
        if any('Consider using the `--user` option' in line for line in output):
            return OperationVerdict.REQUIRES_RETRY
        return OperationVerdict.FAILURE

    def environment(
        self, env: QProcessEnvironment | None = None
    ) -> QProcessEnvironment:
        env = super().environment(env)
        env.insert('PIP_DISABLE_PIP_VERSION_CHECK', '1')
        env.insert('PIP_NO_INPUT', '1')
        return env


class CondaPackageManager(AbstractPackageManager):
    """Conda adapter.

    This class is used to install, update and uninstall packages using conda
    or a conda-like executable.
    """

    name = 'Conda'

    def executable(self) -> str:
        """Find a path to the executable.

        This method assumes that if no environment variable is set that conda is available in the PATH.
        """
        bat = '.bat' if os.name == 'nt' else ''
        for path in (
            Path(os.environ.get('MAMBA_EXE', '')),
            Path(os.environ.get('CONDA_EXE', '')),
            # $CONDA is usually only available on GitHub Actions
            Path(os.environ.get('CONDA', '')) / 'condabin' / f'conda{bat}',
        ):
            if path.is_file():
                return str(path)
        # Otherwise, we assume that conda is available in the PATH
        return f'conda{bat}'

    def available(self) -> bool:
        """Check if the executable is available by checking if it can output its version."""
        try:
            process = run([self.executable(), '--version'], capture_output=True)
        except FileNotFoundError:  # pragma: no cover
            return False
        else:
            return process.returncode == 0

    def arguments(
        self,
        package: Package,
        options: InstallationOptions,
        action: OperationType,
    ) -> list[str]:
        """Compose arguments for the conda command."""
        prefix = options.location or self._default_prefix()
        spec = package.id

        if action == OperationType.INSTALL:
            args = ['install', '-y', '--prefix', prefix]
            if options.version:
                spec = f'{package.id}={options.version}'
        elif action == OperationType.UPDATE:
            args = ['update', '-y', '--prefix', prefix]
        elif action == OperationType.UNINSTALL:
            args = ['remove', '-y', '--prefix', prefix]
        else:
            raise ValueError(f"Action '{action}' not supported!")

        args.append('--override-channels')
        channels = [package.source] if package.source else []
        for channel in (*channels, *self._default_channels()):
            args.extend(['-c', channel])

        return [*args, *options.custom_parameters, spec]

    def classify(
        self,
        package: Package,
        action: OperationType,
        output: Sequence[str],
        exit_code: int,
    ) -> OperationVerdict:
        if exit_code == 0:
            return OperationVerdict.SUCCESS
        return OperationVerdict.FAILURE

    def environment(
        self, env: QProcessEnvironment | None = None
    ) -> QProcessEnvironment:
        env = super().environment(env)
        if 10 <= log.getEffectiveLevel() < 30:  # DEBUG level
            env.insert('CONDA_VERBOSITY', '3')
        if os.name == 'nt':
            if not env.contains('TEMP'):
                temp = gettempdir()
                env.insert('TMP', temp)
                env.insert('TEMP', temp)
            if not env.contains('USERPROFILE'):
                env.insert('HOME', os.path.expanduser('~'))
                env.insert('USERPROFILE', os.path.expanduser('~'))
        return env

    def _default_channels(self) -> list[str]:
        """Default channels for conda installations."""
        return ['conda-forge']

    def _default_prefix(self) -> str:
        """Default prefix for conda installations."""
        if (Path(sys.prefix) / 'conda-meta').is_dir():
            return sys.prefix
        raise ValueError('Prefix has not been specified!')
