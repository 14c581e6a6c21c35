"""User tags attached to packages."""

import logging
from typing import List, Optional

from ..errors import StateError
from ..undo import RevertTag, UndoGroup
from ..universe import Package

logger = logging.getLogger(__name__)


class TagsMixin:
    """Mixin providing user tag operations.

    Requires:
        - self.ext: ExtendedStateTable instance
        - self.user_tags: UserTagRegistry instance
        - self.errors: ErrorChannel instance
        - self.action_group(), self._check_writable() (TransactionMixin)
    """

    def attach_user_tag(self, pkg: Package, tag: str,
                        undo: Optional[UndoGroup] = None) -> bool:
        """Attach a tag to a package.

        Attaching a tag the package already carries is not an error.

        Returns:
            True if the package carries the tag afterwards
        """
        if not self._check_writable():
            return False
        if not self.user_tags.check_valid(tag):
            self.errors.report(StateError(f"Invalid user-tag '{tag}'"))
            return False

        ref = self.user_tags.add(tag)
        est = self.ext[pkg]
        if ref in est.user_tags:
            self.errors.notice(f"User-tag '{tag}' already present for {pkg.full_name}")
            return True

        with self.action_group(undo):
            est.user_tags = est.user_tags | {ref}
            self.dirty = True
        if undo is not None:
            undo.add(RevertTag(package=pkg, tag=tag, attached=True))
        return True

    def detach_user_tag(self, pkg: Package, tag: str,
                        undo: Optional[UndoGroup] = None) -> bool:
        """Remove a tag from a package.

        Returns:
            True if the tag was removed
        """
        if not self._check_writable():
            return False
        if not self.user_tags.check_valid(tag):
            self.errors.report(StateError(f"Invalid user-tag '{tag}'"))
            return False

        ref = self.user_tags.get_ref(tag)
        if ref is None:
            self.errors.report(StateError(f"Could not find valid user-tag '{tag}'"))
            return False

        est = self.ext[pkg]
        if ref not in est.user_tags:
            self.errors.report(StateError(
                f"Could not remove user-tag '{tag}' from package {pkg.full_name}"))
            return False

        with self.action_group(undo):
            est.user_tags = est.user_tags - {ref}
            self.dirty = True
        if undo is not None:
            undo.add(RevertTag(package=pkg, tag=tag, attached=False))
        return True

    def get_user_tags(self, pkg: Package) -> List[str]:
        """Tags of a package, sorted."""
        return sorted(self.user_tags.deref(ref) for ref in self.ext[pkg].user_tags)
