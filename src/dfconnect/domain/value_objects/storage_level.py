"""Storage levels for persisted relations."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StorageLevel:
    """Where and how the server keeps a persisted relation.

    Attributes:
        use_disk: Spill to local disk.
        use_memory: Keep in executor memory.
        use_off_heap: Keep in off-heap memory.
        deserialized: Keep as objects rather than serialized bytes.
        replication: Number of copies, at least 1.
    """

    use_disk: bool
    use_memory: bool
    use_off_heap: bool = False
    deserialized: bool = False
    replication: int = 1

    def __post_init__(self) -> None:
        if self.replication < 1:
            raise ValueError(f"replication must be at least 1, got {self.replication}")

    def __str__(self) -> str:
        places = [
            name
            for name, flag in (
                ("disk", self.use_disk),
                ("memory", self.use_memory),
                ("off-heap", self.use_off_heap),
            )
            if flag
        ]
        kind = "deserialized" if self.deserialized else "serialized"
        where = ", ".join(places) or "none"
        return f"StorageLevel({where}; {kind}; {self.replication}x replicated)"


NONE = StorageLevel(False, False)
DISK_ONLY = StorageLevel(True, False)
MEMORY_ONLY = StorageLevel(False, True)
MEMORY_AND_DISK = StorageLevel(True, True)
MEMORY_AND_DISK_DESER = StorageLevel(True, True, deserialized=True)
OFF_HEAP = StorageLevel(True, True, use_off_heap=True)
