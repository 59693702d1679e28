"""Milestone tracking for escrow agreements.

Each agreement holds exactly MILESTONE_COUNT ordered slots. Position is the
milestone's identity. Completion is monotonic: slots are only ever marked,
never unmarked.
"""

from dataclasses import dataclass

from protocol import MILESTONE_COUNT


@dataclass
class Milestone:
    """One unit of deliverable work."""
    description: str
    payment_share: int = 0
    completed: bool = False

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "payment_share": str(self.payment_share),
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Milestone":
        return cls(
            description=d.get("description", ""),
            payment_share=int(d.get("payment_share", 0)),
            completed=bool(d.get("completed", False)),
        )


class MilestoneList:
    """Fixed-capacity ordered sequence of milestones."""

    def __init__(self, milestones: list[Milestone], capacity: int = MILESTONE_COUNT):
        if len(milestones) != capacity:
            raise ValueError(f"Expected {capacity} milestones, got {len(milestones)}")
        for m in milestones:
            if m.payment_share < 0:
                raise ValueError("Milestone payment_share must be non-negative")
        self.capacity = capacity
        self._items = list(milestones)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __getitem__(self, index: int) -> Milestone:
        return self._items[index]

    def in_range(self, index: int) -> bool:
        return 0 <= index < len(self._items)

    def update_at(self, index: int, fn) -> bool:
        """Replace slot `index` with fn(slot). Returns True if the slot changed."""
        if not self.in_range(index):
            raise IndexError(f"Milestone index {index} out of range (0..{len(self._items) - 1})")
        old = self._items[index]
        new = fn(old)
        self._items[index] = new
        return new != old

    def mark_complete(self, index: int) -> bool:
        """Mark slot `index` complete. Re-marking is a no-op; returns False then."""
        return self.update_at(index, lambda m: Milestone(m.description, m.payment_share, True))

    def all_satisfy(self, predicate) -> bool:
        return all(predicate(m) for m in self._items)

    def all_complete(self) -> bool:
        return self.all_satisfy(lambda m: m.completed)

    def completed_count(self) -> int:
        return sum(1 for m in self._items if m.completed)

    def total_shares(self) -> int:
        return sum(m.payment_share for m in self._items)

    def to_list(self) -> list[dict]:
        return [m.to_dict() for m in self._items]

    @classmethod
    def from_list(cls, items: list[dict]) -> "MilestoneList":
        return cls([Milestone.from_dict(d) for d in items])
