"""
Undo records.

Every mutation can leave behind records that bring the affected packages
back to where they were. Records are plain data; applying one is a
dispatch on its type against the cache that produced it.

    group = UndoGroup()
    cache.mark_delete(pkg, undo=group)
    ...
    group.undo(cache)       # pkg is back to its previous state
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from .depcache import Mode
from .extstate import RemoveReason, SelectionState
from .universe import Package, Version

logger = logging.getLogger(__name__)


@dataclass
class RestoreState:
    """Bring a package back to a recorded base and extended state."""
    package: Package
    mode: Mode
    auto: bool
    purge: bool
    reinstall: bool
    remove_reason: RemoveReason
    selection_state: SelectionState
    forbidver: str


@dataclass
class RevertCandidateVersion:
    """Reinstate the previous candidate version of a package."""
    package: Package
    version: Optional[Version]


@dataclass
class RevertForgetNew:
    """Flag packages as new again."""
    packages: List[Package] = field(default_factory=list)


@dataclass
class RevertTag:
    """Undo a tag change: detach if it was attached, and vice versa."""
    package: Package
    tag: str
    attached: bool


UndoRecord = Union[RestoreState, RevertCandidateVersion, RevertForgetNew, RevertTag]


class UndoGroup:
    """An ordered batch of undo records applied newest first."""

    def __init__(self):
        self.items: List[UndoRecord] = []

    def add(self, item: UndoRecord):
        self.items.append(item)

    def empty(self) -> bool:
        return not self.items

    def undo(self, cache):
        """Apply every record to the cache, most recent first."""
        with cache.action_group():
            for item in reversed(self.items):
                apply_undo(cache, item)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


def apply_undo(cache, item: UndoRecord):
    """Apply one undo record to a StateCache."""
    if isinstance(item, RestoreState):
        cache.restore_package_state(item)
    elif isinstance(item, RevertCandidateVersion):
        if item.version is not None:
            cache.set_candidate_version(item.version)
    elif isinstance(item, RevertForgetNew):
        for pkg in item.packages:
            cache.set_new_flag(pkg, True)
    elif isinstance(item, RevertTag):
        if item.attached:
            cache.detach_user_tag(item.package, item.tag)
        else:
            cache.attach_user_tag(item.package, item.tag)
    else:
        raise TypeError(f"Unknown undo record: {item!r}")
