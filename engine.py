# engine.py
import logging
from enum import IntEnum
from typing import Callable, Dict, Iterable, Optional, TextIO, Tuple, Union

import index
from index import NEAREST_THRESHOLD, OrderedIndex, balanced_from_list
from staging import StagingList
import storage
from storage import MAX_KEY_LEN, MAX_VALUE_LEN

_logger = logging.getLogger("kbstore.engine")

# Fixed section order for dumps
CATEGORIES = ("what", "where", "who")

ConfirmFn = Callable[[str], str]


class KBStatus(IntEnum):
    """Result codes of the collaborator interface (errors are negative)."""
    OK = 0
    CLOSEST_MATCH = 1
    NOT_FOUND = -1
    INVALID = -2
    NOMEM = -3


def is_yes(reply: Optional[str]) -> bool:
    return reply is not None and reply.strip().lower() in ("yes", "y")


class CategoryStore:
    """Three ordered indexes (what / where / who) behind one interface.

    `confirm(prompt) -> reply` is the blocking question used when a lookup
    misses but a close key exists; a "yes"/"y" reply accepts the candidate.
    Without it, close matches are never offered.
    """

    def __init__(
        self,
        confirm: Optional[ConfirmFn] = None,
        *,
        max_key_len: int = MAX_KEY_LEN,
        max_value_len: int = MAX_VALUE_LEN,
        threshold: int = NEAREST_THRESHOLD,
    ) -> None:
        self.confirm = confirm
        self.max_key_len = max_key_len
        self.max_value_len = max_value_len
        self.threshold = threshold
        self._slots: Dict[str, OrderedIndex] = {name: OrderedIndex() for name in CATEGORIES}

    def __repr__(self) -> str:
        sizes = ", ".join(f"{name}={len(idx)}" for name, idx in self._slots.items())
        return f"CategoryStore({sizes})"

    def resolve(self, category: str) -> Optional[OrderedIndex]:
        """Return the index for a category name (any case), or None."""
        return self._slots.get(category.lower())

    def closest(self, category: str, key: str) -> Tuple[KBStatus, Optional[str]]:
        """Return the key a lookup would settle on, without prompting.

        OK with the key itself on an exact hit, CLOSEST_MATCH with the
        candidate key, NOT_FOUND, or INVALID for an unknown category.
        """
        idx = self.resolve(category)
        if idx is None:
            return KBStatus.INVALID, None
        key = key[: self.max_key_len]
        match = idx.nearest(key, self.threshold)
        if match is None:
            return KBStatus.NOT_FOUND, None
        if index.compare_keys(key, match[0]) == 0:
            return KBStatus.OK, match[0]
        return KBStatus.CLOSEST_MATCH, match[0]

    def get(self, category: str, key: str) -> Tuple[KBStatus, Optional[str]]:
        """Return (status, value) for a question about `key`."""
        idx = self.resolve(category)
        if idx is None:
            return KBStatus.INVALID, None
        key = key[: self.max_key_len]

        value = idx.get(key)
        if value is not None:
            return KBStatus.OK, value

        match = idx.nearest(key, self.threshold)
        if match is None or self.confirm is None:
            return KBStatus.NOT_FOUND, None

        match_key, match_value = match
        _logger.debug("No %s entry for %r; offering %r", category, key, match_key)
        reply = self.confirm(f"Sorry, I don't know {category} is {key}. Did you mean {match_key}?")
        if is_yes(reply):
            return KBStatus.CLOSEST_MATCH, match_value
        return KBStatus.NOT_FOUND, None

    def put(self, category: str, key: str, value: str) -> KBStatus:
        """Insert or overwrite an answer.

        INVALID for an unknown category, and also for a key or value that
        could not be saved in the text format (empty key, `=` or a line break
        in the key, a line break in the value). NOMEM on allocation failure.
        """
        idx = self.resolve(category)
        if idx is None:
            return KBStatus.INVALID
        key, value = self._fit(key, value)
        try:
            storage.validate_entry(key, value)
        except ValueError as e:
            _logger.debug("Rejected %s/%r: %s", category, key, e)
            return KBStatus.INVALID
        try:
            idx.set(key, value)
        except MemoryError:
            _logger.error("Out of memory inserting %s/%r", category, key)
            return KBStatus.NOMEM
        return KBStatus.OK

    def _fit(self, key: str, value: str) -> Tuple[str, str]:
        return key[: self.max_key_len], value[: self.max_value_len]

    def reset(self) -> None:
        """Forget everything in every category."""
        for idx in self._slots.values():
            idx.clear()

    # ----------------------- Bulk I/O ----------------------

    def bulk_load(self, triples: Iterable[Tuple[str, str, str]]) -> Union[int, KBStatus]:
        """Replace all three categories with the given entries.

        Entries are staged in sorted lists, then every category is rebuilt as
        a balanced tree. A category with no entries ends up empty. Nothing is
        installed until every tree has been built, so on NOMEM the store is
        exactly as it was.

        Entries the text format could not hold are skipped, the same as in
        put(), so whatever loads can always be dumped again.

        Returns the number of triples staged, or KBStatus.NOMEM.
        """
        staged: Dict[str, StagingList] = {name: StagingList() for name in CATEGORIES}
        built: Dict[str, Tuple[Optional[index._Node], int]] = {}
        count = 0
        try:
            for category, key, value in triples:
                lst = staged.get(category.lower())
                if lst is None:
                    _logger.debug("Skipping entry %r for unknown category %r", key, category)
                    continue
                key, value = self._fit(key, value)
                try:
                    storage.validate_entry(key, value)
                except ValueError as e:
                    _logger.debug("Skipping %s entry %r: %s", category, key, e)
                    continue
                lst.insert_sorted(key, value)
                count += 1
            for name in CATEGORIES:
                built[name] = balanced_from_list(staged[name])
        except MemoryError:
            _logger.error("Out of memory during bulk load; knowledge left unchanged")
            for root, _ in built.values():
                index.clear(root)
            return KBStatus.NOMEM
        finally:
            for lst in staged.values():
                lst.clear()

        for name, (root, size) in built.items():
            self._slots[name].replace_root(root, size)
        _logger.info(
            "Loaded %d entries (%s)",
            count,
            ", ".join(f"{name}={size}" for name, (_, size) in built.items()),
        )
        return count

    def bulk_dump(self, sink: TextIO) -> None:
        """Write every category, keys in descending order."""
        n = storage.write_sections(
            ((name, self._slots[name].items_desc()) for name in CATEGORIES), sink
        )
        _logger.info("Wrote %d entries", n)

    def load(self, fh: TextIO, *, strict: bool = False) -> Union[int, KBStatus]:
        """Parse a sectioned text stream and bulk load it."""
        return self.bulk_load(
            storage.parse_sections(
                fh,
                CATEGORIES,
                max_key_len=self.max_key_len,
                max_value_len=self.max_value_len,
                strict=strict,
            )
        )

    def dump(self, fh: TextIO) -> None:
        self.bulk_dump(fh)

    def load_path(self, path: str, *, strict: bool = False) -> Union[int, KBStatus]:
        return storage.read_path(path, lambda fh: self.load(fh, strict=strict))

    def save_path(self, path: str) -> None:
        storage.write_path(path, self.bulk_dump)
