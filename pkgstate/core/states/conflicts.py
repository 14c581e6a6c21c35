"""Conflict detection against the future state of the system."""

import logging
from typing import Optional

from ..universe import Dependency, Version

logger = logging.getLogger(__name__)


class ConflictsMixin:
    """Mixin answering "would this version conflict with anything?".

    Requires:
        - self.depcache: DepCache instance
    """

    def is_conflicted(self, ver: Optional[Version]) -> Optional[Dependency]:
        """Find a Conflicts/Breaks edge violated by installing a version.

        Checked against the version every other package will have once
        pending changes are applied. Self-conflicts are ignored.

        Args:
            ver: Version that would be installed (None never conflicts)

        Returns:
            The first violated edge, or None
        """
        if ver is None:
            return None

        parent = ver.package
        install_version = self.depcache.install_version

        # Forward conflicts
        for dep in ver.depends:
            if not dep.dep_type.is_negative:
                continue

            target = dep.target
            if target is not parent and dep.satisfied_by(install_version(target)):
                return dep

            # Through providers of the conflicted name
            for prv in target.provided_by:
                owner = prv.owner.package
                if owner is not parent and install_version(owner) is prv.owner \
                        and prv.satisfies(dep.op, dep.target_ver):
                    return dep

        # Reverse conflicts against the package itself
        for dep in parent.rev_depends:
            if not dep.dep_type.is_negative:
                continue
            owner = dep.parent_package
            if owner is not parent and install_version(owner) is dep.parent \
                    and dep.satisfied_by(ver):
                return dep

        # Reverse conflicts against names this version provides
        for prv in ver.provides:
            for dep in prv.target.rev_depends:
                if not dep.dep_type.is_negative:
                    continue
                owner = dep.parent_package
                if owner is not parent and install_version(owner) is dep.parent \
                        and prv.satisfies(dep.op, dep.target_ver):
                    return dep

        return None
