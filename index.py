# index.py
"""
Binary search tree index for key→value storage (strings). Supports:
  - search_exact(root, key) / search_nearest(root, key)
  - insert_or_update(root, key, value): insert or overwrite (last-write-wins)
  - create_leaf(key, value): the only place tree nodes are allocated
  - clear(root): release a whole subtree
  - traverse_ascending / traverse_descending: in-order walks
  - build_balanced(entries, count): height-balanced tree from sorted input

Design:
  - Plain BST: no rebalancing on insert, so sorted sequential inserts degenerate
    into a list. Balance only comes from build_balanced().
  - Keys compare case-insensitively (both sides upper-cased).
  - Walks and clear() use explicit stacks so degenerate trees never hit the
    recursion limit; build_balanced() recurses only O(log n) deep.

OrderedIndex wraps one root and handles the empty-tree special case.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Callable, Iterator, List, Optional, Tuple

if TYPE_CHECKING:
    from staging import StagingList

NEAREST_THRESHOLD = int(os.getenv("KB_NEAREST_THRESHOLD", "200"))


# -------------------- Key helpers --------------------
def compare_keys(a: str, b: str) -> int:
    """Case-insensitive three-way compare: -1, 0 or 1 (as strcmp)."""
    ua, ub = a.upper(), b.upper()
    if ua < ub:
        return -1
    if ua > ub:
        return 1
    return 0


def key_distance(a: str, b: str) -> int:
    """Absolute difference of the lower-cased character-code sums.

    Cheap and tolerant: anagrams score 0, so this is a plausibility filter,
    not an edit distance.
    """
    return abs(sum(map(ord, a.lower())) - sum(map(ord, b.lower())))


# -------------------- Node class --------------------
class _Node:
    """Tree node: owns its key/value and both child slots."""
    __slots__ = ("key", "value", "left", "right")

    def __init__(self, key: str, value: str) -> None:
        self.key = key
        self.value = value
        self.left: Optional[_Node] = None
        self.right: Optional[_Node] = None

    def __repr__(self) -> str:
        return f"_Node({self.key!r})"


# -------------------- Node-level operations --------------------
def create_leaf(key: str, value: str) -> _Node:
    """Allocate a single node with both children absent."""
    return _Node(key, value)


def search_exact(root: Optional[_Node], key: str) -> Optional[_Node]:
    """Return the node whose key equals `key` (case-insensitive), or None."""
    node = root
    while node is not None:
        cmp = compare_keys(key, node.key)
        if cmp == 0:
            return node
        node = node.right if cmp > 0 else node.left
    return None


def search_nearest(
    root: Optional[_Node], key: str, threshold: int = NEAREST_THRESHOLD
) -> Optional[_Node]:
    """Exact hit if present, otherwise the best-scored node on the search path.

    Only the nodes visited by the descent are scored, so this is a heuristic
    over one root→leaf path, not a scan of the tree. The best candidate is
    returned only when its score is strictly below `threshold`.
    """
    best: Optional[_Node] = None
    best_score = 0
    node = root
    while node is not None:
        cmp = compare_keys(key, node.key)
        if cmp == 0:
            return node
        score = key_distance(key, node.key)
        # Strict < so ties keep the first node encountered.
        if best is None or score < best_score:
            best, best_score = node, score
        node = node.right if cmp > 0 else node.left
    if best is not None and best_score < threshold:
        return best
    return None


def insert_or_update(root: _Node, key: str, value: str) -> bool:
    """Insert `key` below `root` or overwrite its value in place.

    Returns True if a new node was linked in, False on overwrite.
    MemoryError from create_leaf() propagates; the tree is left untouched.
    """
    if root is None:
        raise ValueError("insert_or_update() needs a non-empty tree; install the first node as root")
    node = root
    while True:
        cmp = compare_keys(key, node.key)
        if cmp == 0:
            node.value = value
            return False
        if cmp > 0:
            if node.right is None:
                node.right = create_leaf(key, value)
                return True
            node = node.right
        else:
            if node.left is None:
                node.left = create_leaf(key, value)
                return True
            node = node.left


def clear(root: Optional[_Node]) -> None:
    """Unlink every node of the subtree, children before parent."""
    stack: List[_Node] = [root] if root is not None else []
    while stack:
        node = stack[-1]
        if node.left is not None:
            stack.append(node.left)
            node.left = None
        elif node.right is not None:
            stack.append(node.right)
            node.right = None
        else:
            stack.pop()


def _walk(root: Optional[_Node], descending: bool) -> Iterator[_Node]:
    """Iterative in-order walk; descending swaps the roles of the children."""
    stack: List[_Node] = []
    node = root
    while stack or node is not None:
        while node is not None:
            stack.append(node)
            node = node.right if descending else node.left
        node = stack.pop()
        yield node
        node = node.left if descending else node.right


def traverse_ascending(root: Optional[_Node], visit: Callable[[_Node], None]) -> None:
    for node in _walk(root, descending=False):
        visit(node)


def traverse_descending(root: Optional[_Node], visit: Callable[[_Node], None]) -> None:
    for node in _walk(root, descending=True):
        visit(node)


# -------------------- Balancer --------------------
def build_balanced(entries: Iterator[Tuple[str, str]], count: int) -> Optional[_Node]:
    """Build a height-balanced tree from the next `count` ascending entries.

    `entries` is a cursor: each call consumes exactly `count` items from it.

        count = 6 -> left gets 6//2 = 3, root takes the 4th, right gets 2

                    e3
                  /    \\
                e1      e5
               /  \\    /
             e0   e2  e4

    Subtree sizes differ by at most one at every node, so the height is
    ceil(log2(count + 1)). On MemoryError anything built so far is cleared
    before the error propagates, so callers never see a partial tree.
    """
    if count <= 0:
        return None

    left = build_balanced(entries, count // 2)
    try:
        try:
            key, value = next(entries)
        except StopIteration:
            raise ValueError("entry cursor exhausted before count was reached") from None
        root = create_leaf(key, value)
    except (MemoryError, ValueError):
        clear(left)
        raise
    root.left = left

    try:
        root.right = build_balanced(entries, count - count // 2 - 1)
    except (MemoryError, ValueError):
        clear(root)
        raise
    return root


def balanced_from_list(staging: StagingList) -> Tuple[Optional[_Node], int]:
    """Count a sorted staging list and balance it; return (root, size)."""
    n = staging.count()
    return build_balanced(iter(staging), n), n


# -------------------- Public Index --------------------
class OrderedIndex:
    """One BST root plus its size.

    Invariants:
      - For every node: left keys < node key < right keys (case-insensitive)
      - Keys are unique; set() on an existing key overwrites in place
    """

    # Set True during testing to assert invariants after each write
    _ENABLE_VALIDATE_AFTER_WRITE = False

    def __init__(self) -> None:
        self._root: Optional[_Node] = None
        self._size: int = 0

    # -------------------- Public API --------------------
    @property
    def root(self) -> Optional[_Node]:
        return self._root

    def set(self, key: str, value: str) -> bool:
        """Insert or overwrite key's value; True if the key was new."""
        if self._root is None:
            self._root = create_leaf(key, value)
            added = True
        else:
            added = insert_or_update(self._root, key, value)
        if added:
            self._size += 1
        if self._ENABLE_VALIDATE_AFTER_WRITE:
            self._validate()
        return added

    def get(self, key: str) -> Optional[str]:
        """Return the value for key, or None if missing."""
        node = search_exact(self._root, key)
        return None if node is None else node.value

    def nearest(self, key: str, threshold: int = NEAREST_THRESHOLD) -> Optional[Tuple[str, str]]:
        """Return (key, value) of the exact or nearest plausible node, or None."""
        node = search_nearest(self._root, key, threshold)
        return None if node is None else (node.key, node.value)

    def clear(self) -> None:
        """Remove all entries."""
        clear(self._root)
        self._root = None
        self._size = 0

    def replace_root(self, root: Optional[_Node], size: int) -> None:
        """Swap in a prebuilt tree (from build_balanced); the old tree is released."""
        old = self._root
        self._root = root
        self._size = size
        clear(old)

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: str) -> bool:
        return search_exact(self._root, key) is not None

    # -------- Iterators --------
    def items(self) -> Iterator[Tuple[str, str]]:
        """Yield (key, value) in ascending key order."""
        for node in _walk(self._root, descending=False):
            yield node.key, node.value

    def items_desc(self) -> Iterator[Tuple[str, str]]:
        """Yield (key, value) in descending key order (the dump order)."""
        for node in _walk(self._root, descending=True):
            yield node.key, node.value

    def keys(self) -> Iterator[str]:
        for k, _ in self.items():
            yield k

    def stats(self) -> dict:
        """Return simple stats (size, height, minimal height, balanced)."""
        height, balanced = self._collect_stats()
        return {
            "size": self._size,
            "height": height,
            "min_height": self._size.bit_length(),
            "balanced": balanced,
        }

    # -------------------- Validation & Stats (debug helpers) --------------------
    def _validate(self) -> None:
        """Raise AssertionError if the BST ordering or size is wrong.

        An in-order walk of a valid BST is strictly increasing, which covers
        both ordering and key uniqueness.
        """
        prev: Optional[str] = None
        seen = 0
        for node in _walk(self._root, descending=False):
            if prev is not None:
                assert compare_keys(prev, node.key) < 0, f"{prev!r} !< {node.key!r}"
            prev = node.key
            seen += 1
        assert seen == self._size, f"size {self._size} but {seen} nodes"

    def _collect_stats(self) -> Tuple[int, bool]:
        """Return (height, every node's subtree sizes differ by <= 1)."""
        if self._root is None:
            return 0, True
        # Post-order with an explicit stack: node -> (size, height)
        info = {}
        balanced = True
        stack: List[Tuple[_Node, bool]] = [(self._root, False)]
        while stack:
            node, expanded = stack.pop()
            if not expanded:
                stack.append((node, True))
                for child in (node.left, node.right):
                    if child is not None:
                        stack.append((child, False))
                continue
            ls, lh = info.pop(id(node.left), (0, 0)) if node.left is not None else (0, 0)
            rs, rh = info.pop(id(node.right), (0, 0)) if node.right is not None else (0, 0)
            if abs(ls - rs) > 1:
                balanced = False
            info[id(node)] = (ls + rs + 1, max(lh, rh) + 1)
        return info[id(self._root)][1], balanced
