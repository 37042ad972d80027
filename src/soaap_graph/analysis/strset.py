"""A small set-of-strings container used for node tags."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, MutableSet


class StringSet(MutableSet):
    """Unordered set of strings.

    ``union`` and ``intersection`` return new sets and leave both operands
    untouched; ``update`` is the accumulate-in-place variant. Iteration order
    is unspecified, so anything rendered for humans goes through ``sorted``
    or :meth:`join`.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Iterable[str] = ()) -> None:
        self._items: set[str] = set(items)

    @classmethod
    def _from_iterable(cls, it: Iterable[str]) -> "StringSet":
        return cls(it)

    def __contains__(self, value: object) -> bool:
        return value in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"StringSet({sorted(self._items)!r})"

    def __reduce__(self):
        return (StringSet, (sorted(self._items),))

    def add(self, value: str) -> None:
        self._items.add(value)

    def discard(self, value: str) -> bool:
        """Remove ``value`` and report whether it was present."""

        if value in self._items:
            self._items.remove(value)
            return True
        return False

    def union(self, other: Iterable[str]) -> "StringSet":
        return StringSet(self._items.union(other))

    def intersection(self, other: Iterable[str]) -> "StringSet":
        return StringSet(self._items.intersection(other))

    def update(self, other: Iterable[str]) -> "StringSet":
        """Add every element of ``other`` in place and return ``self``."""

        self._items.update(other)
        return self

    def copy(self) -> "StringSet":
        return StringSet(self._items)

    def transform_each(self, template: str) -> "StringSet":
        """Format every element through ``template`` (e.g. ``"[[{}]]"``)."""

        return StringSet(template.format(item) for item in self._items)

    def join(self, separator: str) -> str:
        return separator.join(sorted(self._items))


__all__ = ["StringSet"]
