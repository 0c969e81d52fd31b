#!/usr/bin/env python3
"""Unit tests for paths.py - remote path resolution."""

import pytest

from nxcloud.paths import (
    ROOT,
    is_root,
    normalize,
    remote_ancestors,
    remote_basename,
    remote_join,
    remote_parent,
    resolve,
)


class TestResolve:
    """Tests for resolve()."""

    @pytest.mark.parametrize("current,user_input,expected", [
        ("/a/b", "../c", "/a/c"),
        ("/a", "../../x", "/x"),
        ("/a/b", "/z", "/z"),
        ("/", "Documents", "/Documents"),
        ("/Documents", "", "/Documents"),
        ("/Documents", ".", "/Documents"),
        ("/Documents", "./Reports//2024/", "/Documents/Reports/2024"),
        ("/", "..", "/"),
        ("/a/b/c", "../../..", "/"),
        ("/a", "/b/../c/./d", "/c/d"),
    ])
    def test_resolve_examples(self, current, user_input, expected):
        """Test resolution of relative and absolute input."""
        assert resolve(current, user_input) == expected

    def test_resolve_is_always_absolute(self):
        """Test that results start with '/' and have no trailing slash."""
        for user_input in ["x", "x/", "../x", "./x/y/", "//x"]:
            result = resolve("/base", user_input)
            assert result.startswith("/")
            assert not result.endswith("/")

    def test_resolve_is_idempotent(self):
        """Test that resolving an already resolved path changes nothing."""
        first = resolve("/a/b", "../c/./d/")
        assert resolve("/anywhere", first) == first

    def test_resolve_keeps_spaces_and_unicode(self):
        """Test that names are not escaped or altered."""
        assert resolve("/", "My Files/Übersicht.pdf") == "/My Files/Übersicht.pdf"


class TestHelpers:
    """Tests for the small path helpers."""

    def test_normalize_root(self):
        assert normalize("") == ROOT
        assert normalize("///") == ROOT

    def test_remote_join(self):
        """Test joining a name onto a directory."""
        assert remote_join("/", "a") == "/a"
        assert remote_join("/a", "b.txt") == "/a/b.txt"

    def test_remote_join_does_not_split_names(self):
        """Test that a name containing '/' cannot escape its parent."""
        assert remote_join("/a", "../b") == "/a/..b"

    def test_remote_basename(self):
        assert remote_basename("/a/b.txt") == "b.txt"
        assert remote_basename("/a") == "a"
        assert remote_basename("/") == ""

    def test_remote_parent(self):
        assert remote_parent("/a/b") == "/a"
        assert remote_parent("/a") == "/"
        assert remote_parent("/") == "/"

    def test_remote_ancestors(self):
        """Test ancestors are listed top-down and include the path itself."""
        assert remote_ancestors("/a/b/c") == ["/a", "/a/b", "/a/b/c"]
        assert remote_ancestors("/") == []

    def test_is_root(self):
        assert is_root("/")
        assert is_root("/a/..")
        assert not is_root("/a")
