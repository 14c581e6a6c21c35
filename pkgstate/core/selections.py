"""
External selection database synchronization.

When a package's selection changes, the (name, architecture, selection)
triple is pushed to the dselect/dpkg selection database so other tools
see the same intent.
"""

import logging
import shutil
import subprocess
from typing import List, Optional, Tuple

from .extstate import SelectionState

logger = logging.getLogger(__name__)

Selection = Tuple[str, str, SelectionState]

# dpkg --set-selections keywords
SELECTION_WORDS = {
    SelectionState.INSTALL: 'install',
    SelectionState.HOLD: 'hold',
    SelectionState.DEINSTALL: 'deinstall',
    SelectionState.PURGE: 'purge',
}


class SelectionSync:
    """Base class for selection collaborators: records what is pushed."""

    def __init__(self):
        self.pushed: List[Selection] = []

    def push(self, selections: List[Selection]) -> bool:
        """Send selections; returns False on failure."""
        self.pushed.extend(selections)
        return True


class DpkgSelections(SelectionSync):
    """Push selections through `dpkg --set-selections`."""

    def __init__(self, dpkg: str = 'dpkg', root: Optional[str] = None):
        super().__init__()
        self.dpkg = dpkg
        self.root = root

    def format(self, selections: List[Selection]) -> str:
        lines = []
        for name, arch, state in selections:
            word = SELECTION_WORDS.get(state)
            if word is None:
                continue
            lines.append(f"{name}:{arch} {word}\n")
        return ''.join(lines)

    def push(self, selections: List[Selection]) -> bool:
        if not selections:
            return True

        dpkg = shutil.which(self.dpkg)
        if dpkg is None:
            logger.error(f"Cannot save selections: {self.dpkg} not found")
            return False

        args = [dpkg]
        if self.root:
            args.extend(['--root', self.root])
        args.append('--set-selections')

        logger.debug(f"Running: {' '.join(args)} ({len(selections)} selections)")
        try:
            result = subprocess.run(args, input=self.format(selections),
                                    capture_output=True, text=True, timeout=300)
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.error(f"dpkg --set-selections failed: {e}")
            return False

        if result.returncode != 0:
            logger.error(f"dpkg --set-selections failed: {result.stderr.strip()}")
            return False

        self.pushed.extend(selections)
        return True
