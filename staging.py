# staging.py
"""Insertion-sorted singly-linked list used while bulk loading.

Entries are staged here (not in the live tree) so the tree can be built in
one pass by index.build_balanced() instead of by sequential inserts, which
would degenerate on already-sorted input.
"""

from __future__ import annotations

from typing import Iterator, Optional, Tuple

from index import compare_keys


class _StageNode:
    __slots__ = ("key", "value", "next")

    def __init__(self, key: str, value: str, nxt: Optional[_StageNode] = None) -> None:
        self.key = key
        self.value = value
        self.next = nxt


class StagingList:
    """Strictly ascending (case-insensitive) list of (key, value) pairs."""

    def __init__(self) -> None:
        self._head: Optional[_StageNode] = None

    def insert_sorted(self, key: str, value: str) -> bool:
        """Place (key, value) in order; True if a node was added.

        An equal key already in the list is overwritten, so the last
        occurrence in the source wins and the list stays strictly ascending.
        """
        prev: Optional[_StageNode] = None
        cur = self._head
        while cur is not None and compare_keys(key, cur.key) > 0:
            prev, cur = cur, cur.next

        if cur is not None and compare_keys(key, cur.key) == 0:
            cur.value = value
            return False

        node = _StageNode(key, value, cur)
        if prev is None:
            self._head = node
        else:
            prev.next = node
        return True

    def count(self) -> int:
        n = 0
        cur = self._head
        while cur is not None:
            n += 1
            cur = cur.next
        return n

    def clear(self) -> None:
        cur = self._head
        self._head = None
        while cur is not None:
            cur.next, cur = None, cur.next

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        cur = self._head
        while cur is not None:
            yield cur.key, cur.value
            cur = cur.next

    def __len__(self) -> int:
        return self.count()
