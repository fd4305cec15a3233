import configparser
from logging import getLogger
from pathlib import Path

DEFAULT_CONFIG_PATH = Path.home() / ".package-operations"
DEFAULT_CONFIG_FILE_PATH = DEFAULT_CONFIG_PATH / "package-operations.ini"
SECTION = "settings"

# Flags that are not manager specific. Manager specific flags are built by
# appending the manager name, e.g. `AlwaysElevatePip`.
DEFAULTS = {
    "AllowParallelInstalls": False,
    "DoCacheAdminRights": False,
    "DoCacheAdminRightsForBatches": False,
    "AskToDeleteNewDesktopShortcuts": False,
}

log = getLogger(__name__)

# stands for DEFAULT_CONFIG_FILE_PATH, looked up when called
_DEFAULT = object()


def get_configuration(path: Path | None = _DEFAULT):
    """
    Get the operation engine configuration.

    All values live in the `['settings']` section and are read as booleans.
    The file is created with the defaults if it does not exist yet. When
    `path` is `None` the configuration is kept in memory only.
    """
    if path is _DEFAULT:
        path = DEFAULT_CONFIG_FILE_PATH

    config = configparser.ConfigParser()
    config[SECTION] = {key: str(value) for key, value in DEFAULTS.items()}

    if path is None:
        return config

    if path.exists():
        config.read(path)
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as configfile:
            config.write(configfile)

    return config


class Settings:
    """Boolean flags read by the operation engine.

    Values are read every time they are needed, so changes made while
    operations are queued are seen by the next decision.
    """

    def __init__(self, config_file: Path | None = _DEFAULT):
        if config_file is _DEFAULT:
            config_file = DEFAULT_CONFIG_FILE_PATH
        self._config_file = config_file
        self._config = get_configuration(config_file)

    def get(self, key: str) -> bool:
        return self._config.getboolean(SECTION, key, fallback=False)

    def set(self, key: str, value: bool) -> None:
        self._config.set(SECTION, key, str(bool(value)))
        if self._config_file is not None:
            with open(self._config_file, "w") as configfile:
                self._config.write(configfile)
        log.debug("Setting %s set to %s", key, bool(value))

    def reload(self) -> None:
        """Read the configuration file again."""
        self._config = get_configuration(self._config_file)
