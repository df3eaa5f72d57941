"""Item identity: immutable descriptor plus the transient inventory slot id."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

type DescriptorKey = tuple[str, str, str]


@dataclass(frozen=True, slots=True)
class ItemIdentity:
    """Provider descriptor of one physical item.

    ``class_id``/``instance_id``/``pattern`` survive transfers between accounts;
    ``asset_id`` is the inventory slot id and changes after every trade, so it is
    excluded from equality.
    """

    class_id: str
    instance_id: str
    pattern: str | None = None
    asset_id: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.class_id:
            raise ValueError("ItemIdentity requires a class id")

    @property
    def descriptor(self) -> DescriptorKey:
        return (self.class_id, self.instance_id, self.pattern or "")

    @property
    def is_unique(self) -> bool:
        """Whether the descriptor alone pins down one physical item.

        Without pattern data every copy of a fungible item (cases, stickers)
        shares the same class and instance id.
        """
        return bool(self.pattern)

    @property
    def descriptor_key(self) -> str | None:
        if not self.is_unique:
            return None
        return "item:" + ":".join(self.descriptor)

    @property
    def asset_key(self) -> str | None:
        if not self.asset_id:
            return None
        return f"asset:{self.asset_id}"

    @property
    def priority_keys(self) -> tuple[str, ...]:
        """Lookup keys in resolution order: live asset slot first, then descriptor."""
        keys = (self.asset_key, self.descriptor_key)
        return tuple(key for key in keys if key is not None)

    @property
    def canonical_key(self) -> str:
        key = self.descriptor_key or self.asset_key
        if key is None:
            raise ValueError(
                f"Item {self.class_id}/{self.instance_id} has neither pattern nor asset id"
            )
        return key

    def with_asset(self, asset_id: str | None) -> ItemIdentity:
        if asset_id is None or asset_id == self.asset_id:
            return self
        return replace(self, asset_id=asset_id)

    def merged(self, other: ItemIdentity) -> ItemIdentity:
        """Fold in details a later observation knows about (pattern, new asset id)."""
        pattern = self.pattern or other.pattern
        asset_id = other.asset_id or self.asset_id
        if pattern == self.pattern and asset_id == self.asset_id:
            return self
        return replace(self, pattern=pattern, asset_id=asset_id)
