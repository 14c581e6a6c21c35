"""Tests for cascading removal of unused dependencies and orphan sweeping.

These tests verify:
1. Removing a package removes its automatically installed dependencies
2. The same through a virtual package
3. Unneeded automatic installs are cancelled
4. Packages removed as unused come back when needed again
5. Reinstatement is blocked by conflicts, and the block propagates
6. Dependency cycles terminate, and the tool never removes itself
"""

from pkgstate.core.config import Policy
from pkgstate.core.depcache import Mode
from pkgstate.core.errors import SelfRemovalRefused
from pkgstate.core.extstate import RemoveReason, SelectionState
from pkgstate.core.undo import UndoGroup


def add_top(u):
    """top (installed, manual) -> mid -> base."""
    top = u.add_package("top")
    u.add_version(top, "1.0", depends="mid")
    u.set_installed(top, "1.0")


def add_cycle(u):
    """x (installed, manual) -> c1 -> c2 -> c1."""
    x = u.add_package("x")
    u.add_version(x, "1.0", depends="c1")
    c1 = u.add_package("c1")
    u.add_version(c1, "1.0", depends="c2")
    c2 = u.add_package("c2")
    u.add_version(c2, "1.0", depends="c1")
    for pkg in (x, c1, c2):
        u.set_installed(pkg, "1.0")


def add_plugin(u):
    """plugin (installed, manual) -> pkgstate."""
    plugin = u.add_package("plugin")
    u.add_version(plugin, "1.0", depends="pkgstate")
    u.set_installed(plugin, "1.0")


def mark_auto(cache, *packages):
    with cache.action_group():
        for pkg in packages:
            cache.mark_auto_installed(pkg, True)


class TestCascade:
    """Tests for removal of dependencies that became unused."""

    def test_auto_dependency_is_removed(self, cache, universe):
        app, lib = universe.find("app"), universe.find("lib")
        mark_auto(cache, lib)
        assert cache.depcache[lib].garbage is False

        cache.mark_delete(app)

        assert cache.depcache[lib].mode == Mode.DELETE
        assert cache.ext[lib].remove_reason == RemoveReason.UNUSED
        assert cache.ext[lib].selection_state == SelectionState.DEINSTALL
        assert cache.ext[app].remove_reason == RemoveReason.MANUAL

    def test_manual_dependency_is_kept(self, cache, universe):
        app, lib = universe.find("app"), universe.find("lib")

        cache.mark_delete(app)

        assert cache.depcache[lib].mode == Mode.KEEP

    def test_dependency_still_needed_is_kept(self, make_cache, universe_factory):
        def add_second_user(u):
            other = u.add_package("other")
            u.add_version(other, "1.0", depends="lib")
            u.set_installed(other, "1.0")

        u = universe_factory(add_second_user)
        cache = make_cache(u)
        mark_auto(cache, u.find("lib"))

        cache.mark_delete(u.find("app"))

        assert cache.depcache[u.find("lib")].mode == Mode.KEEP

    def test_transitive(self, make_cache, universe_factory):
        u = universe_factory(add_top)
        cache = make_cache(u)
        mid, base = u.find("mid"), u.find("base")
        mark_auto(cache, mid, base)

        cache.mark_delete(u.find("top"))

        assert cache.depcache[mid].mode == Mode.DELETE
        assert cache.depcache[base].mode == Mode.DELETE
        assert cache.ext[base].remove_reason == RemoveReason.UNUSED

    def test_virtual_provider_is_removed(self, cache, universe):
        exim, mailer = universe.find("exim"), universe.find("mailer")
        mark_auto(cache, exim)
        assert cache.depcache[exim].mode == Mode.KEEP

        cache.mark_delete(mailer)

        assert cache.depcache[exim].mode == Mode.DELETE
        assert cache.ext[exim].remove_reason == RemoveReason.UNUSED

    def test_purge_unused(self, make_cache, universe):
        cache = make_cache(universe, Policy(purge_unused=True))
        lib = universe.find("lib")
        mark_auto(cache, lib)

        cache.mark_delete(universe.find("app"))

        assert cache.depcache[lib].purge is True
        assert cache.ext[lib].selection_state == SelectionState.PURGE

    def test_disabled(self, make_cache, universe):
        cache = make_cache(universe, Policy(delete_unused=False))
        lib = universe.find("lib")
        mark_auto(cache, lib)

        cache.mark_delete(universe.find("app"))

        assert cache.depcache[lib].mode == Mode.KEEP
        assert cache.depcache[lib].garbage is True

    def test_dependency_cycle(self, make_cache, universe_factory):
        u = universe_factory(add_cycle)
        cache = make_cache(u)
        c1, c2 = u.find("c1"), u.find("c2")
        mark_auto(cache, c1, c2)
        assert cache.depcache[c1].garbage is False

        cache.mark_delete(u.find("x"))

        assert cache.depcache[c1].mode == Mode.DELETE
        assert cache.depcache[c2].mode == Mode.DELETE
        assert cache.ext[c1].remove_reason == RemoveReason.UNUSED
        assert cache.ext[c2].remove_reason == RemoveReason.UNUSED

    def test_each_removal_cascades_on_its_own(self, cache, universe):
        lib, base = universe.find("lib"), universe.find("base")
        mark_auto(cache, lib, base)

        cache.mark_delete(universe.find("app"))
        assert cache.depcache[lib].mode == Mode.DELETE
        assert cache.depcache[base].mode == Mode.KEEP

        cache.mark_delete(universe.find("mid"))
        assert cache.depcache[base].mode == Mode.DELETE
        assert cache.ext[base].remove_reason == RemoveReason.UNUSED

    def test_same_removal_cascades_again_after_undo(self, cache, universe):
        app, lib = universe.find("app"), universe.find("lib")
        mark_auto(cache, lib)
        undo = UndoGroup()

        cache.mark_delete(app, undo=undo)
        undo.undo(cache)
        assert cache.depcache[lib].mode == Mode.KEEP

        cache.mark_delete(app)

        assert cache.depcache[lib].mode == Mode.DELETE
        assert cache.ext[lib].remove_reason == RemoveReason.UNUSED

    def test_own_package_is_not_removed(self, make_cache, universe_factory):
        u = universe_factory(add_plugin)
        cache = make_cache(u)
        me = u.find("pkgstate")
        mark_auto(cache, me)

        cache.mark_delete(u.find("plugin"))

        assert cache.depcache[me].mode == Mode.KEEP
        assert cache.ext[me].selection_state == SelectionState.INSTALL
        assert cache.errors.errors_of(SelfRemovalRefused)


class TestSweep:
    """Tests for the sweep run when the outermost action group closes."""

    def test_unused_auto_package_is_removed(self, cache, universe):
        tool = universe.find("tool")

        cache.mark_auto_installed(tool, True)

        assert cache.depcache[tool].mode == Mode.DELETE
        assert cache.ext[tool].remove_reason == RemoveReason.UNUSED

    def test_own_package_is_not_swept(self, cache, universe):
        me = universe.find("pkgstate")

        cache.mark_auto_installed(me, True)

        assert cache.depcache[me].garbage is True
        assert cache.depcache[me].mode == Mode.KEEP
        assert cache.ext[me].remove_reason == RemoveReason.MANUAL
        assert cache.errors.errors_of(SelfRemovalRefused)

    def test_keep_unused_pattern(self, make_cache, universe):
        cache = make_cache(universe, Policy(keep_unused_pattern="^to"))
        tool = universe.find("tool")

        cache.mark_auto_installed(tool, True)

        assert cache.depcache[tool].mode == Mode.KEEP

    def test_unneeded_auto_install_is_cancelled(self, cache, universe):
        newapp, newlib = universe.find("newapp"), universe.find("newlib")
        cache.mark_install(newapp)
        assert cache.depcache[newlib].mode == Mode.INSTALL

        cache.mark_keep(newapp)

        assert cache.depcache[newlib].mode == Mode.KEEP
        assert cache.ext[newlib].selection_state == SelectionState.DEINSTALL

    def test_reinstated_when_needed_again(self, cache, universe):
        app, lib = universe.find("app"), universe.find("lib")
        mark_auto(cache, lib)
        cache.mark_delete(app)
        assert cache.depcache[lib].mode == Mode.DELETE

        cache.mark_keep(app)

        assert cache.depcache[lib].mode == Mode.KEEP
        assert cache.ext[lib].selection_state == SelectionState.INSTALL
        assert cache.depcache[lib].auto is True

    def test_reinstatement_follows_dependencies(self, make_cache, universe_factory):
        u = universe_factory(add_top)
        cache = make_cache(u)
        top, mid, base = u.find("top"), u.find("mid"), u.find("base")
        mark_auto(cache, mid, base)
        cache.mark_delete(top)

        cache.mark_keep(top)

        assert cache.depcache[mid].mode == Mode.KEEP
        assert cache.depcache[base].mode == Mode.KEEP
        assert cache.depcache[top].broken is False

    def test_conflict_blocks_reinstatement(self, make_cache, universe_factory):
        u = universe_factory(add_top)
        cache = make_cache(u)
        top, mid, base = u.find("top"), u.find("mid"), u.find("base")
        mark_auto(cache, mid, base)
        cache.mark_delete(top)

        with cache.action_group():
            cache.mark_keep(top)
            cache.mark_install(u.find("blocker"))

        # base conflicts with blocker; mid needs base so it stays out too
        assert cache.depcache[base].mode == Mode.DELETE
        assert cache.depcache[mid].mode == Mode.DELETE
        assert cache.depcache[top].broken is True
        assert cache.is_conflicted(base.current_version) is not None
        assert cache.is_conflicted(mid.current_version) is None


class TestConflicts:
    """Tests for is_conflicted."""

    def test_no_conflict(self, cache, universe):
        assert cache.is_conflicted(universe.find("base").current_version) is None
        assert cache.is_conflicted(None) is None

    def test_forward_conflict(self, cache, universe):
        blocker = universe.find("blocker")
        dep = cache.is_conflicted(blocker.versions[0])
        assert dep is not None
        assert dep.target is universe.find("base")

    def test_reverse_conflict_needs_pending_install(self, cache, universe):
        base = universe.find("base")
        cache.mark_install(universe.find("blocker"))

        dep = cache.is_conflicted(base.current_version)

        assert dep is not None
        assert dep.parent_package is universe.find("blocker")

    def test_conflict_through_provides(self, make_cache, universe_factory):
        def add_mta_conflict(u):
            other = u.add_package("other-mta")
            u.add_version(other, "1.0", conflicts="mta")

        u = universe_factory(add_mta_conflict)
        cache = make_cache(u)

        dep = cache.is_conflicted(u.find("other-mta").versions[0])

        assert dep is not None
        assert dep.target is u.find("mta")
