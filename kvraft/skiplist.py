"""An ordered key-value store built on a skip list."""

from __future__ import annotations

import json
import logging
import random
import threading
from typing import Any, Iterator, List, Optional, Tuple

log = logging.getLogger(__name__)


class _Node:
    __slots__ = ("key", "value", "forward")

    def __init__(self, key: Any, value: Any, level: int) -> None:
        self.key = key
        self.value = value
        self.forward: List[Optional[_Node]] = [None] * (level + 1)


class SkipList:
    """A thread-safe skip list mapping ordered keys to values."""

    def __init__(self, max_level: int, *, rng: Optional[random.Random] = None) -> None:
        if max_level < 0:
            raise ValueError("max_level must not be negative")
        self._max_level = max_level
        self._level = 0
        self._count = 0
        self._header = _Node(None, None, max_level)
        self._rng = rng or random.Random()
        self._lock = threading.RLock()

    def get_random_level(self) -> int:
        level = 1
        while self._rng.getrandbits(1):
            level += 1
        return min(level, self._max_level)

    def _locate(self, key: Any) -> Tuple[List[_Node], Optional[_Node]]:
        update = [self._header] * (self._max_level + 1)
        current = self._header
        for i in range(self._level, -1, -1):
            while (nxt := current.forward[i]) is not None and nxt.key < key:
                current = nxt
            update[i] = current
        return update, current.forward[0]

    def insert_element(self, key: Any, value: Any) -> bool:
        """Insert a new key; return False and change nothing if the key exists."""
        with self._lock:
            update, current = self._locate(key)
            if current is not None and current.key == key:
                log.debug("key: %s, exists", key)
                return False
            level = self.get_random_level()
            if level > self._level:
                for i in range(self._level + 1, level + 1):
                    update[i] = self._header
                self._level = level
            node = _Node(key, value, level)
            for i in range(level + 1):
                node.forward[i] = update[i].forward[i]
                update[i].forward[i] = node
            self._count += 1
            log.debug("Successfully inserted key:%s, value:%s", key, value)
            return True

    def display_list(self) -> None:
        lines = ["", "*****Skip List*****"]
        for i in range(self._level + 1):
            node = self._header.forward[i]
            entries = []
            while node is not None:
                entries.append(f"{node.key}:{node.value};")
                node = node.forward[i]
            lines.append(f"Level {i}: " + "".join(entries))
        print("\n".join(lines))

    def search_element(self, key: Any) -> Any:
        """Return the value stored under ``key``; raise ``KeyError`` if absent."""
        with self._lock:
            _, current = self._locate(key)
            if current is not None and current.key == key:
                return current.value
        raise KeyError(key)

    def delete_element(self, key: Any) -> bool:
        """Remove ``key``; return whether it was present."""
        with self._lock:
            update, current = self._locate(key)
            if current is None or current.key != key:
                return False
            for i in range(self._level + 1):
                if update[i].forward[i] is not current:
                    break
                update[i].forward[i] = current.forward[i]
            while self._level > 0 and self._header.forward[self._level] is None:
                self._level -= 1
            self._count -= 1
            log.debug("Successfully deleted key %s", key)
            return True

    def insert_set_element(self, key: Any, value: Any) -> None:
        """Insert ``key``, replacing the value if it is already present."""
        with self._lock:
            if key in self:
                self.delete_element(key)
            self.insert_element(key, value)

    def dump_file(self) -> str:
        """Serialise all entries, in key order, to a string."""
        with self._lock:
            pairs = list(self.items())
        return json.dumps(
            {"keys": [k for k, _ in pairs], "values": [v for _, v in pairs]},
            ensure_ascii=False,
        )

    def load_file(self, dump: str) -> None:
        """Insert every entry held by a string made by ``dump_file``."""
        if not dump:
            return
        try:
            data = json.loads(dump)
            keys, values = data["keys"], data["values"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise ValueError("malformed skip list dump") from exc
        if not isinstance(keys, list) or not isinstance(values, list) or len(keys) != len(values):
            raise ValueError("malformed skip list dump")
        for key, value in zip(keys, values):
            self.insert_element(key, value)

    def size(self) -> int:
        return self._count

    def items(self) -> Iterator[Tuple[Any, Any]]:
        node = self._header.forward[0]
        while node is not None:
            yield node.key, node.value
            node = node.forward[0]

    def __iter__(self) -> Iterator[Any]:
        return (key for key, _ in self.items())

    def __len__(self) -> int:
        return self._count

    def __contains__(self, key: Any) -> bool:
        try:
            self.search_element(key)
        except KeyError:
            return False
        return True