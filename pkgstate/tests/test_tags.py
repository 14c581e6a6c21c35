"""Tests for user tags."""

import pytest

from pkgstate.core.errors import StateError
from pkgstate.core.extstate import UserTagRegistry
from pkgstate.core.undo import UndoGroup


class TestUserTagRegistry:
    """Tests for tag interning."""

    @pytest.mark.parametrize("tag,valid", [
        ("keep", True),
        ("my-tag:1", True),
        ("", False),
        ("two words", False),
        ("tab\there", False),
    ])
    def test_check_valid(self, tag, valid):
        assert UserTagRegistry.check_valid(tag) is valid

    def test_add_is_stable(self):
        tags = UserTagRegistry()
        ref = tags.add("a")
        assert tags.add("b") != ref
        assert tags.add("a") == ref
        assert tags.deref(ref) == "a"
        assert len(tags) == 2

    def test_parse_and_format(self):
        tags = UserTagRegistry()
        refs = tags.parse("zeta alpha  beta")
        assert len(refs) == 3
        assert tags.format(refs) == "alpha beta zeta"


class TestTagOperations:
    """Tests for attach_user_tag / detach_user_tag."""

    def test_attach_and_detach(self, cache, universe):
        tool = universe.find("tool")

        assert cache.attach_user_tag(tool, "important") is True
        assert cache.attach_user_tag(tool, "alpha") is True
        assert cache.get_user_tags(tool) == ["alpha", "important"]

        assert cache.detach_user_tag(tool, "important") is True
        assert cache.get_user_tags(tool) == ["alpha"]

    def test_attach_twice_is_a_notice(self, cache, universe):
        tool = universe.find("tool")
        cache.attach_user_tag(tool, "x")

        assert cache.attach_user_tag(tool, "x") is True

        assert cache.get_user_tags(tool) == ["x"]
        assert not cache.errors.pending_error()
        assert len(cache.errors) == 1

    def test_invalid_tag(self, cache, universe):
        assert cache.attach_user_tag(universe.find("tool"), "bad tag") is False
        assert cache.errors.pending_error()

    def test_detach_unknown_tag(self, cache, universe):
        assert cache.detach_user_tag(universe.find("tool"), "never-seen") is False
        assert len(cache.errors.errors_of(StateError)) == 1

    def test_detach_tag_not_on_package(self, cache, universe):
        cache.attach_user_tag(universe.find("lib"), "x")

        assert cache.detach_user_tag(universe.find("tool"), "x") is False
        assert cache.errors.pending_error()

    def test_undo_attach(self, cache, universe):
        tool = universe.find("tool")
        undo = UndoGroup()

        cache.attach_user_tag(tool, "x", undo=undo)
        undo.undo(cache)

        assert cache.get_user_tags(tool) == []

    def test_tag_change_is_notified(self, cache, universe):
        tool = universe.find("tool")
        seen = []
        cache.subscribe(seen.append)

        cache.attach_user_tag(tool, "x")

        assert seen == [{tool}]
