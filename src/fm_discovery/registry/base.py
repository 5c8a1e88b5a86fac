"""
Base interface for registry backends.

This module defines the abstract base class every coordination-store client
implements, plus the RegistryNode tree returned by reads. Keys are
hierarchical ("/a/b/c"); a key with children is a directory.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from fm_discovery.keys import normalize


@dataclass
class RegistryNode:
    """Node of the key tree returned by ``Registry.get``."""

    key: str
    value: Optional[str] = None
    dir: bool = False
    ttl: Optional[int] = None
    nodes: List["RegistryNode"] = field(default_factory=list)

    @property
    def name(self) -> str:
        """Last path segment of the key."""
        return self.key.rstrip("/").rsplit("/", 1)[-1]

    def child(self, name: str) -> Optional["RegistryNode"]:
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def child_value(self, name: str) -> Optional[str]:
        node = self.child(name)
        if node is None or node.dir:
            return None
        return node.value

    def walk(self) -> Iterator["RegistryNode"]:
        """Yield this node and all descendants, depth first."""
        yield self
        for node in self.nodes:
            yield from node.walk()

    def leaves(self) -> Dict[str, str]:
        """Flatten the tree into a key -> value mapping of non-directory nodes."""
        return {
            node.key: node.value
            for node in self.walk()
            if not node.dir and node.value is not None
        }

    @classmethod
    def from_flat(
        cls,
        prefix: str,
        items: Mapping[str, Optional[str]],
        recursive: bool = True,
        directories: Iterable[str] = (),
    ) -> "RegistryNode":
        """Build a tree rooted at ``prefix`` from flat key -> value pairs.

        Keys outside the prefix are ignored. Without ``recursive`` only the
        direct children of the prefix are returned, directories without
        their contents. ``directories`` lists keys that exist as empty
        directories in stores that track them.

        Example:
            >>> root = RegistryNode.from_flat("/a", {"/a/b/c": "1"})
            >>> root.child("b").child("c").value
            '1'
        """
        root_key = normalize(prefix)
        values = {normalize(key): value for key, value in items.items()}
        if root_key in values and values[root_key] is not None:
            return cls(key=root_key, value=values[root_key])

        root = cls(key=root_key, dir=True)
        base = "" if root_key == "/" else root_key
        entries = [(key, values[key], False) for key in values]
        entries += [(normalize(key), None, True) for key in directories]

        for key, value, is_dir in sorted(entries, key=lambda entry: entry[0]):
            if not key.startswith(base + "/"):
                continue

            segments = key[len(base) + 1:].split("/")
            if not recursive and len(segments) > 1:
                segments = segments[:1]
                is_dir = True

            node = root
            path = base
            for segment in segments[:-1]:
                path = f"{path}/{segment}"
                existing = node.child(segment)
                if existing is None:
                    existing = cls(key=path, dir=True)
                    node.nodes.append(existing)
                existing.dir = True
                node = existing

            path = f"{path}/{segments[-1]}"
            last = node.child(segments[-1])
            if last is None:
                last = cls(key=path, dir=is_dir)
                node.nodes.append(last)
            if is_dir:
                last.dir = True
            else:
                last.value = value

        return root


class Registry(ABC):
    """Abstract coordination-store client.

    Every operation raises ``RegistryError`` when the store call fails.
    Implementations only need to provide put/refresh/get/delete; ``connect``
    and ``close`` default to no-ops.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the unique name of this backend"""
        pass

    @abstractmethod
    async def put(
        self,
        key: str,
        value: str = "",
        ttl: Optional[int] = None,
        directory: bool = False,
    ) -> None:
        """
        Write a key, optionally with a TTL lease

        Args:
            key: Hierarchical key
            value: Value to store (ignored for directories)
            ttl: Lease duration in seconds, None for no expiry
            directory: Create a directory node instead of a value
        """
        pass

    @abstractmethod
    async def refresh(self, key: str, ttl: int) -> None:
        """Extend the TTL lease of an existing key without changing its value"""
        pass

    @abstractmethod
    async def get(self, key_prefix: str, recursive: bool = True) -> RegistryNode:
        """
        Read the tree under a key

        A missing prefix yields an empty directory node rather than an error.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a key and everything under it; missing keys are ignored"""
        pass

    async def connect(self) -> None:
        """Verify connectivity with the store"""
        pass

    async def close(self) -> None:
        """Release any client connections"""
        pass
