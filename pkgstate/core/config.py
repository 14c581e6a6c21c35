"""
Central configuration for pkgstate paths and policy.

Paths:
    <state_dir>/pkgstates       - Extended state journal
    <state_dir>/pkgstates.old   - Previous journal (rotated on every save)
    <state_dir>/pkgstates.new   - Journal being written (renamed into place)
    <state_dir>/lock            - Write lock, held while the cache is writable

The state directory defaults to /var/lib/pkgstate and can be moved with the
PKGSTATE_STATE_DIR environment variable (tests, chroots).

Policy file (optional, YAML mapping):
    delete_unused: true
    purge_unused: false
    keep_unused_pattern: "^linux-image-.*"
"""

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Default locations
DEFAULT_STATE_DIR = Path("/var/lib/pkgstate")
STATE_FILE_NAME = "pkgstates"
LOCK_FILE_NAME = "lock"
POLICY_FILE = Path("/etc/pkgstate/policy.yaml")

# Environment override for the state directory
STATE_DIR_ENV = "PKGSTATE_STATE_DIR"

# Suffixes used by the journal rotation
NEW_SUFFIX = ".new"
OLD_SUFFIX = ".old"


@dataclass
class Policy:
    """Behaviour switches for marking, cascading removal and sweeping.

    Defaults match what a stock installation does.
    """
    # Remove automatically installed packages nothing depends on anymore
    delete_unused: bool = True
    # Purge (instead of remove) packages removed because they are unused
    purge_unused: bool = False
    # Install recommended packages along with their recommender
    install_recommends: bool = True
    # Recommends/Suggests keep their targets from being autoremoved
    recommends_important: bool = True
    suggests_important: bool = True
    # Explicitly keep recommended/suggested packages installed
    keep_recommends: bool = False
    keep_suggests: bool = False
    # Treat Suggests like Recommends when computing garbage
    suggests_important_marking: bool = False
    # Follow changes made to the external (dselect) selection database
    track_dselect_state: bool = True
    # Mark every upgradable package for upgrade at load time
    auto_upgrade: bool = False
    auto_install: bool = True
    # Packages whose name matches are never considered unused
    keep_unused_pattern: str = "^linux-image-.*"
    # The package providing this tool; it can never remove itself
    self_package: str = "pkgstate"

    @property
    def follows_recommends(self) -> bool:
        """Recommends keep their targets alive during mark-and-sweep."""
        return self.install_recommends or self.keep_recommends

    @property
    def follows_suggests(self) -> bool:
        """Suggests keep their targets alive during mark-and-sweep."""
        return self.keep_suggests or self.suggests_important_marking

    @property
    def keep_recommends_installed(self) -> bool:
        """Recommends block cascading removal of their targets."""
        return (self.install_recommends or self.recommends_important
                or self.keep_recommends)

    @property
    def keep_suggests_installed(self) -> bool:
        """Suggests block cascading removal of their targets."""
        return self.suggests_important or self.keep_suggests

    def keep_unused_matcher(self) -> Optional["re.Pattern"]:
        """Compile the keep-unused pattern, or None if unset or invalid."""
        if not self.keep_unused_pattern:
            return None
        try:
            return re.compile(self.keep_unused_pattern)
        except re.error as e:
            logger.warning(f"Ignoring invalid keep_unused_pattern "
                           f"{self.keep_unused_pattern!r}: {e}")
            return None


def load_policy(path: Union[str, Path, None] = None) -> Policy:
    """Load a Policy from a YAML file.

    A missing file yields the defaults. Unknown keys are logged and ignored.

    Args:
        path: Policy file (default: /etc/pkgstate/policy.yaml)

    Returns:
        Policy instance

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping
    """
    import yaml

    policy_path = Path(path) if path else POLICY_FILE
    if not policy_path.exists():
        return Policy()

    try:
        with open(policy_path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse policy file {policy_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read policy file {policy_path}: {e}") from e

    if data is None:
        return Policy()
    if not isinstance(data, dict):
        raise ConfigError(f"Policy file {policy_path} must contain a mapping")

    known = {f.name: f for f in fields(Policy)}
    values = {}
    for key, value in data.items():
        # Accept both snake_case and the Dash-Case used in apt-style configs
        name = str(key).replace('-', '_').lower()
        if name not in known:
            logger.warning(f"Unknown policy option '{key}' in {policy_path}")
            continue
        default = getattr(Policy, name)
        if isinstance(default, bool) and not isinstance(value, bool):
            raise ConfigError(f"Policy option '{key}' must be true or false")
        values[name] = value if isinstance(default, bool) else str(value or '')

    return Policy(**values)


def get_state_dir(state_dir: Union[str, Path, None] = None) -> Path:
    """Get the state directory.

    Args:
        state_dir: Explicit directory, overrides everything else
    """
    if state_dir:
        return Path(state_dir)
    env = os.environ.get(STATE_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return DEFAULT_STATE_DIR


def get_state_file(state_dir: Union[str, Path, None] = None) -> Path:
    """Get the journal path: <state_dir>/pkgstates"""
    return get_state_dir(state_dir) / STATE_FILE_NAME


def get_lock_file(state_dir: Union[str, Path, None] = None) -> Path:
    """Get the write lock path: <state_dir>/lock"""
    return get_state_dir(state_dir) / LOCK_FILE_NAME
