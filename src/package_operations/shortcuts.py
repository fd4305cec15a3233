import os
import sys
from collections.abc import Iterable, Sequence
from logging import getLogger
from pathlib import Path

log = getLogger(__name__)

SHORTCUT_PATTERNS = ('*.lnk', '*.url', '*.desktop')


def default_desktop_directories() -> list[Path]:
    """Desktop folders where installers usually drop shortcuts."""
    directories = [Path.home() / 'Desktop']
    if sys.platform == 'win32' and (public := os.environ.get('PUBLIC')):
        directories.append(Path(public) / 'Desktop')
    return directories


class DesktopShortcuts:
    """Detect and remove desktop shortcuts created by package operations."""

    def __init__(self, directories: Sequence[Path] | None = None) -> None:
        self._directories = (
            list(directories)
            if directories is not None
            else default_desktop_directories()
        )

    def snapshot(self) -> set[Path]:
        """Return the shortcuts currently on the desktop."""
        shortcuts: set[Path] = set()
        for directory in self._directories:
            if not directory.is_dir():
                continue
            for pattern in SHORTCUT_PATTERNS:
                shortcuts.update(directory.glob(pattern))
        return shortcuts

    def reconcile(self, before: Iterable[Path]) -> list[Path]:
        """Remove the shortcuts that were not present in `before`.

        Returns the shortcuts that were removed.
        """
        new_shortcuts = sorted(self.snapshot() - set(before))
        removed = []
        for shortcut in new_shortcuts:
            try:
                shortcut.unlink()
            except OSError as exc:
                log.warning('Could not remove shortcut %s: %s', shortcut, exc)
            else:
                log.info('Removed new desktop shortcut %s', shortcut)
                removed.append(shortcut)
        return removed
