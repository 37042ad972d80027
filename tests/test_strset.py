"""Tests for the StringSet tag container."""

from __future__ import annotations

import pickle

from soaap_graph.analysis.strset import StringSet


def test_union_and_intersection_leave_operands_untouched() -> None:
    left = StringSet(["a", "b"])
    right = StringSet(["b", "c"])

    assert left.union(right) == StringSet(["a", "b", "c"])
    assert left.intersection(right) == StringSet(["b"])
    assert left == StringSet(["a", "b"])
    assert right == StringSet(["b", "c"])


def test_update_accumulates_in_place() -> None:
    tags = StringSet(["a"])
    returned = tags.update(["b", "a"])

    assert returned is tags
    assert sorted(tags) == ["a", "b"]


def test_discard_reports_presence() -> None:
    tags = StringSet(["a"])

    assert tags.discard("a") is True
    assert tags.discard("a") is False
    assert len(tags) == 0


def test_transform_each_and_join() -> None:
    tags = StringSet(["CVE-2", "CVE-1"])

    assert tags.transform_each("[[{}]]") == StringSet(["[[CVE-1]]", "[[CVE-2]]"])
    assert tags.join(", ") == "CVE-1, CVE-2"


def test_copy_is_independent() -> None:
    tags = StringSet(["a"])
    clone = tags.copy()
    clone.add("b")

    assert "b" not in tags


def test_pickles() -> None:
    tags = StringSet(["x", "y"])

    assert pickle.loads(pickle.dumps(tags)) == tags
