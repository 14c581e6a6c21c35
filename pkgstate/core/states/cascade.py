"""Cascading removal of dependencies nothing else needs."""

import logging
from typing import List, Set

from ..depcache import Mode
from ..universe import DepType, Package, Priority

logger = logging.getLogger(__name__)


class CascadeMixin:
    """Mixin offering a removed package's unused dependencies for removal.

    Requires:
        - self.depcache: DepCache instance
        - self.policy: Policy instance
        - self._internal_mark_delete(): removal without cascading (MarkingMixin)
    """

    def _cascade_dep_types(self) -> Set[DepType]:
        types = {DepType.DEPENDS, DepType.PRE_DEPENDS}
        if self.policy.keep_recommends_installed:
            types.add(DepType.RECOMMENDS)
        if self.policy.keep_suggests_installed:
            types.add(DepType.SUGGESTS)
        return types

    def can_remove_autoinstalled(self, pkg: Package) -> bool:
        """True if nothing that stays or gets installed needs the package.

        Virtual packages are judged on their reverse dependencies only.
        A real package must be installed and automatically installed.
        """
        if not pkg.is_virtual:
            if pkg.current_version is None:
                return False
            if not self.depcache[pkg].auto:
                return False

        types = self._cascade_dep_types()
        for dep in pkg.rev_depends:
            if dep.dep_type not in types:
                continue
            parent = dep.parent_package
            state = self.depcache[parent]
            remains = parent.is_installed and state.mode != Mode.DELETE
            if remains or state.mode == Mode.INSTALL:
                return False
        return True

    def _is_required(self, pkg: Package) -> bool:
        if pkg.essential or pkg.important:
            return True
        ver = pkg.current_version
        return ver is not None and ver.priority in (Priority.REQUIRED, Priority.IMPORTANT)

    def _delete_unused_dependencies(self, pkg: Package, visited: Set[int]):
        """Remove the dependencies of a removed package that became unused.

        Works through an explicit stack. Each package is expanded at most
        once per top-level removal, tracked in visited by package id.
        """
        if not self.policy.delete_unused:
            return

        purge = self.policy.purge_unused
        types = self._cascade_dep_types()
        stack: List[Package] = [pkg]

        while stack:
            current = stack.pop()
            if current.current_version is None or current.id in visited:
                continue
            visited.add(current.id)

            # Pushed in reverse so dependencies are expanded in field order
            offered: List[Package] = []
            for dep in current.current_version.depends:
                if dep.dep_type not in types:
                    continue
                target = dep.target

                if target.is_virtual:
                    for prv in target.provided_by:
                        if not self.can_remove_autoinstalled(target):
                            continue
                        owner = prv.owner.package
                        if not self.depcache[owner].auto or \
                                not self.can_remove_autoinstalled(owner):
                            continue
                        self._remove_unused(owner, purge, current)
                        offered.append(owner)
                    continue

                if target.current_version is None:
                    continue
                if target.is_installed and self.depcache[target].auto \
                        and not self._is_required(target) \
                        and self.can_remove_autoinstalled(target):
                    self._remove_unused(target, purge, current)
                    offered.append(target)

            stack.extend(reversed(offered))

    def _remove_unused(self, pkg: Package, purge: bool, because: Package):
        logger.debug(f"Removing {pkg.full_name}: no longer needed after "
                     f"removing {because.full_name}")
        self._internal_mark_delete(pkg, purge, True, cascade=False)
