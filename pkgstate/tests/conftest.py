"""Shared fixtures: small package universes and state caches over them."""

import pytest

from pkgstate.core.config import Policy
from pkgstate.core.selections import SelectionSync
from pkgstate.core.statecache import StateCache
from pkgstate.core.universe import CurrentState, Universe


def build_universe(extra=None) -> Universe:
    """A small system.

    Installed:
        app 1.0     (manual)    Depends: lib, Recommends: doc, Suggests: extra
        lib 1.0     (2.0 available, 0.5 not downloadable)
        mid 1.0                 Depends: base
        base 1.0
        tool 1.0    (standalone)
        exim 1.0                Provides: mta
        mailer 1.0              Depends: mta
        pkgstate 1.0
    Not installed:
        newapp 1.0              Depends: newlib
        newlib 1.0
        blocker 1.0             Conflicts: base
        doc 1.0
        extra 1.0
        oldconf 1.0 (config files only)
    """
    u = Universe(arch="amd64")

    app = u.add_package("app")
    u.add_version(app, "1.0", depends="lib", recommends="doc", suggests="extra")
    lib = u.add_package("lib")
    u.add_version(lib, "0.5", downloadable=False)
    u.add_version(lib, "1.0")
    u.add_version(lib, "2.0")
    mid = u.add_package("mid")
    u.add_version(mid, "1.0", depends="base")
    base = u.add_package("base")
    u.add_version(base, "1.0")
    tool = u.add_package("tool")
    u.add_version(tool, "1.0")
    exim = u.add_package("exim")
    u.add_version(exim, "1.0", provides="mta")
    mailer = u.add_package("mailer")
    u.add_version(mailer, "1.0", depends="mta")
    me = u.add_package("pkgstate")
    u.add_version(me, "1.0")

    newapp = u.add_package("newapp")
    u.add_version(newapp, "1.0", depends="newlib")
    newlib = u.add_package("newlib")
    u.add_version(newlib, "1.0")
    blocker = u.add_package("blocker")
    u.add_version(blocker, "1.0", conflicts="base")
    doc = u.add_package("doc")
    u.add_version(doc, "1.0")
    extra_pkg = u.add_package("extra")
    u.add_version(extra_pkg, "1.0")
    oldconf = u.add_package("oldconf")
    u.add_version(oldconf, "1.0")

    if extra is not None:
        extra(u)
    u.finalize()

    for pkg in (app, lib, mid, base, tool, exim, mailer, me):
        u.set_installed(pkg, "1.0")
    u.set_installed(oldconf, None, current_state=CurrentState.CONFIG_FILES)
    return u


@pytest.fixture
def universe():
    return build_universe()


@pytest.fixture
def universe_factory():
    """Builds identical universes, e.g. to reload a saved journal."""
    return build_universe


@pytest.fixture
def sink():
    """Selection collaborator that only records what it is given."""
    return SelectionSync()


@pytest.fixture
def make_cache(tmp_path, sink):
    """Factory opening a StateCache over a universe in a private state dir."""
    caches = []

    def _make(universe, policy=None, open_cache=True, **kwargs):
        cache = StateCache(universe, policy or Policy(), state_dir=tmp_path,
                           selections=sink)
        if open_cache:
            cache.open(**kwargs)
        caches.append(cache)
        return cache

    yield _make

    for cache in caches:
        cache.close()


@pytest.fixture
def cache(make_cache, universe):
    return make_cache(universe)

