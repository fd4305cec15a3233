try:
    from package_operations._version import version as __version__
except ImportError:
    __version__ = 'unknown'

from package_operations.base_package_manager import (
    AbstractPackageManager,
    InstallationOptions,
    OperationType,
    OperationVerdict,
    OverriddenOptions,
    Package,
)
from package_operations.base_qt_process_operation import (
    AbstractProcessOperation,
    OperationQueue,
    OperationStatus,
)
from package_operations.qt_package_operations import (
    InstallPackageOperation,
    OperationContext,
    PackageOperation,
    UninstallPackageOperation,
    UpdatePackageOperation,
)
from package_operations.qt_package_registry import PackageTag

__all__ = [
    'AbstractPackageManager',
    'AbstractProcessOperation',
    'InstallPackageOperation',
    'InstallationOptions',
    'OperationContext',
    'OperationQueue',
    'OperationStatus',
    'OperationType',
    'OperationVerdict',
    'OverriddenOptions',
    'Package',
    'PackageOperation',
    'PackageTag',
    'UninstallPackageOperation',
    'UpdatePackageOperation',
    '__version__',
]
