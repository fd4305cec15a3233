"""Package manager-agnostic types shared by the operation engine.

The engine never talks to a concrete package manager. Each manager is
represented by an `AbstractPackageManager` subclass that knows how to
build the arguments for an action and how to turn the exit code and the
captured output of the child process into an `OperationVerdict`.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum, auto

from qtpy.QtCore import QProcessEnvironment


class OperationType(StrEnum):
    "Actions a package operation can carry out"

    INSTALL = auto()
    UPDATE = auto()
    UNINSTALL = auto()


class OperationVerdict(StrEnum):
    "Classified outcome of a finished package manager process"

    SUCCESS = auto()
    FAILURE = auto()
    # the action may succeed if run again with different arguments
    REQUIRES_RETRY = auto()


@dataclass(frozen=True)
class OverriddenOptions:
    """Per-package overrides that win over global configuration.

    ``None`` means the package does not override the setting.
    """

    run_as_administrator: bool | None = None


@dataclass(frozen=True)
class InstallationOptions:
    """Options snapshot taken when an operation is created."""

    run_as_administrator: bool = False
    custom_parameters: tuple[str, ...] = ()
    scope: str | None = None
    version: str | None = None
    location: str | None = None

    def __str__(self) -> str:
        parts = [f'RunAsAdministrator={self.run_as_administrator}']
        if self.scope:
            parts.append(f'Scope={self.scope}')
        if self.version:
            parts.append(f'Version={self.version}')
        if self.location:
            parts.append(f'Location={self.location}')
        if self.custom_parameters:
            parts.append(
                f'CustomParameters={" ".join(self.custom_parameters)}'
            )
        return '; '.join(parts)


@dataclass(frozen=True)
class Package:
    """A package as seen by one of the package views.

    The same software can be represented by several `Package` objects
    (installed, available, upgradable). They share the same `key`.
    """

    id: str
    name: str
    version: str
    manager: 'AbstractPackageManager'
    new_version: str = ''
    source: str = ''
    overridden_options: OverriddenOptions = field(
        default_factory=OverriddenOptions
    )

    @property
    def key(self) -> tuple[str, str]:
        return (self.manager.name, self.id)


class AbstractPackageManager:
    """Abstract base class for package manager adapters."""

    # Used in configuration keys, e.g. `AlwaysElevatePip`
    name: str = ''

    # abstract method
    def executable(self) -> str:
        "Path to the executable that will run the task"
        raise NotImplementedError

    def call_args(self) -> list[str]:
        "Arguments that always precede the operation arguments"
        return []

    # abstract method
    def arguments(
        self,
        package: Package,
        options: InstallationOptions,
        action: OperationType,
    ) -> list[str]:
        "Arguments supplied to the executable for `action` on `package`"
        raise NotImplementedError

    # abstract method
    def classify(
        self,
        package: Package,
        action: OperationType,
        output: Sequence[str],
        exit_code: int,
    ) -> OperationVerdict:
        """Turn a finished process into a verdict.

        Must be deterministic for the same ``(exit_code, output)`` pair.
        """
        raise NotImplementedError

    def environment(
        self, env: QProcessEnvironment | None = None
    ) -> QProcessEnvironment:
        "Changes needed in the environment variables."
        if env is None:
            env = QProcessEnvironment.systemEnvironment()
        return env

    # abstract method
    def available(self) -> bool:
        """
        Check if the manager is available by performing a little test
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.name!r}>'
