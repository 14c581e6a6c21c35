"""Extended per-package state: intent, provenance and user tags."""

import re
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Dict, FrozenSet, Iterator, List, Optional

from .universe import Package, SelectedState, Universe

# The selection values are shared with dselect
SelectionState = SelectedState


class RemoveReason(IntEnum):
    """Why a pending removal was scheduled.

    The integer values are what the journal stores. USER is no longer
    produced but still read from old journals.
    """
    MANUAL = 0
    USER = 1
    LIBAPT = 2
    FROM_RESOLVER = 3
    UNUSED = 4


@dataclass
class ExtendedState:
    """Everything this engine knows about a package beyond its base state."""
    selection_state: SelectionState = SelectionState.UNKNOWN
    # Last selection pushed to (or read from) the external database
    original_selection_state: SelectionState = SelectionState.UNKNOWN
    new_package: bool = True
    reinstall: bool = False
    # An upgrade was pending when the journal was written
    upgrade: bool = False
    remove_reason: RemoveReason = RemoveReason.MANUAL
    forbidver: str = ""
    # Candidate pinned by the user ("" follows the policy candidate)
    candver: str = ""
    previously_auto_package: bool = False
    user_tags: FrozenSet[int] = frozenset()

    def copy(self) -> "ExtendedState":
        return replace(self)


class ExtendedStateTable:
    """One ExtendedState per package, indexed by package id.

    The table is sized from the universe and refuses to be used with a
    package that does not belong to it.
    """

    def __init__(self, universe: Universe):
        self.universe = universe
        self._states: List[ExtendedState] = []
        self.rebuild()

    def rebuild(self):
        """Reset every record to its defaults, one per package."""
        self._states = [ExtendedState() for _ in range(len(self.universe))]

    def get(self, pkg: Package) -> ExtendedState:
        if len(self._states) != len(self.universe):
            raise RuntimeError(
                f"State table has {len(self._states)} records for "
                f"{len(self.universe)} packages")
        if pkg.id >= len(self._states) or self.universe[pkg.id] is not pkg:
            raise KeyError(f"{pkg.full_name} is not part of this universe")
        return self._states[pkg.id]

    __getitem__ = get

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[ExtendedState]:
        return iter(self._states)

    def copy_states(self) -> List[ExtendedState]:
        return [s.copy() for s in self._states]

    def restore_states(self, states: List[ExtendedState]):
        if len(states) != len(self.universe):
            raise ValueError("Snapshot does not match the package universe")
        self._states = [s.copy() for s in states]


# Tags are single words: no whitespace, no control characters
TAG_REGEX = re.compile(r'^[^\s\x00-\x1f\x7f]+$')


class UserTagRegistry:
    """Interns user tag strings to small integers shared by all packages."""

    def __init__(self):
        self._tags: List[str] = []
        self._refs: Dict[str, int] = {}

    @staticmethod
    def check_valid(tag: str) -> bool:
        return bool(tag) and TAG_REGEX.match(tag) is not None

    def add(self, tag: str) -> int:
        """Return the reference for a tag, interning it if needed."""
        ref = self._refs.get(tag)
        if ref is None:
            ref = len(self._tags)
            self._tags.append(tag)
            self._refs[tag] = ref
        return ref

    def get_ref(self, tag: str) -> Optional[int]:
        return self._refs.get(tag)

    def deref(self, ref: int) -> str:
        return self._tags[ref]

    def parse(self, text: str) -> FrozenSet[int]:
        """Intern a space-separated tag list, skipping invalid words."""
        return frozenset(self.add(t) for t in text.split() if self.check_valid(t))

    def format(self, refs: FrozenSet[int]) -> str:
        return ' '.join(sorted(self.deref(r) for r in refs))

    def clear(self):
        self._tags.clear()
        self._refs.clear()

    def __len__(self) -> int:
        return len(self._tags)
