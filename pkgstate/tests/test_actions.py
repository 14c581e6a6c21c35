"""Tests for pending-action classification and interesting dependencies"""

import pytest

from pkgstate.core.actions import PkgActionState, or_group_subsumes, subsumes
from pkgstate.core.config import Policy
from pkgstate.core.universe import CurrentState, Universe


def edge(u, text, dep_type="depends"):
    """First edge of a one-clause relation on a throwaway package."""
    owner = u.add_package(f"owner{len(u)}")
    ver = u.add_version(owner, "1.0", **{dep_type: text})
    u.finalize()
    return ver.clauses[0]


class TestFindPkgState:
    """Tests for find_pkg_state."""

    def test_unchanged(self, cache, universe):
        assert cache.find_pkg_state(universe.find("tool")) == PkgActionState.UNCHANGED

    def test_install(self, cache, universe):
        newapp = universe.find("newapp")
        cache.mark_install(newapp)
        assert cache.find_pkg_state(newapp) == PkgActionState.INSTALL

    def test_downgrade(self, make_cache, universe_factory):
        u = universe_factory()
        lib = u.find("lib")
        u.set_installed(lib, "2.0")
        cache = make_cache(u)

        cache.set_candidate_version(lib.find_version("1.0"))
        cache.mark_install(lib)

        assert cache.find_pkg_state(lib) == PkgActionState.DOWNGRADE

    def test_broken(self, cache, universe):
        blocker = universe.find("blocker")
        cache.mark_install(blocker)

        assert cache.find_pkg_state(blocker) == PkgActionState.BROKEN
        assert cache.find_pkg_state(blocker, ignore_broken=True) == PkgActionState.INSTALL

    def test_unconfigured(self, make_cache, universe_factory):
        u = universe_factory()
        u.set_installed(u.find("tool"), "1.0", current_state=CurrentState.HALF_CONFIGURED)
        cache = make_cache(u)

        assert cache.find_pkg_state(u.find("tool")) == PkgActionState.UNCONFIGURED


class TestSubsumes:
    """Tests for dependency subsumption."""

    @pytest.mark.parametrize("d1,d2,expected", [
        ("a", "a (>= 2.0)", True),
        ("a (>= 2.0)", "a", False),
        ("a (>= 1.0)", "a (>= 2.0)", True),
        ("a (>= 2.0)", "a (>= 1.0)", False),
        ("a (>= 1.0)", "a (= 1.5)", True),
        ("a (<< 2.0)", "a (<< 1.0)", True),
        ("a (<< 2.0)", "a (= 2.0)", False),
        ("a (= 1.0)", "a (= 1.0)", True),
        ("a (>= 1.0)", "b (>= 1.0)", False),
    ])
    def test_subsumes(self, d1, d2, expected):
        u = Universe()
        c1, c2 = edge(u, d1), edge(u, d2)
        assert subsumes(c1.alternatives[0], c2.alternatives[0]) is expected

    def test_or_groups(self):
        u = Universe()
        wide = edge(u, "a | b")
        narrow = edge(u, "a (>= 1.0)")
        assert or_group_subsumes(wide, narrow) is False
        assert or_group_subsumes(narrow, wide) is False
        assert or_group_subsumes(edge(u, "a"), wide) is True


class TestInterestingDeps:
    """Tests for is_interesting_dep."""

    def test_critical(self, cache, universe):
        dep = universe.find("app").current_version.clauses[0].alternatives[0]
        assert cache.is_interesting_dep(dep) is True

    def test_suggests_are_not_interesting(self, cache, universe):
        clauses = universe.find("app").current_version.clauses
        suggests = [c for c in clauses if c.dep_type.value == "Suggests"][0]
        assert cache.is_interesting_dep(suggests.alternatives[0]) is False

    def test_unmet_recommends_of_current_version(self, cache, universe):
        clauses = universe.find("app").current_version.clauses
        recommends = [c for c in clauses if c.dep_type.value == "Recommends"][0]
        # doc is not installed: the user did not want it
        assert cache.is_interesting_dep(recommends.alternatives[0]) is False

    def test_recommends_disabled(self, make_cache, universe):
        cache = make_cache(universe, Policy(install_recommends=False))
        clauses = universe.find("app").current_version.clauses
        recommends = [c for c in clauses if c.dep_type.value == "Recommends"][0]
        assert cache.is_interesting_dep(recommends.alternatives[0]) is False

    def test_new_recommends_of_upgrade(self, make_cache, universe_factory):
        def add_upgrade(u):
            app = u.find("app")
            u.add_version(app, "2.0", depends="lib", recommends="extra")

        u = universe_factory(add_upgrade)
        cache = make_cache(u)
        ver = u.find("app").find_version("2.0")
        recommends = [c for c in ver.clauses if c.dep_type.value == "Recommends"][0]

        # 1.0 suggested extra but never recommended it
        assert cache.is_interesting_dep(recommends.alternatives[0]) is True

    def test_result_is_cached(self, cache, universe):
        dep = universe.find("app").current_version.clauses[0].alternatives[0]
        cache.is_interesting_dep(dep)
        assert cache.interesting._table[dep.clause.id] == cache.interesting.INTERESTING
