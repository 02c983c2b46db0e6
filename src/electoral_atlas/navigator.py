"""Breadcrumb state machine for drill-down navigation."""

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from electoral_atlas.cache import CacheKey
from electoral_atlas.hierarchy import MAX_LEVEL

ROOT_LEVEL = 2


@dataclass(frozen=True)
class DrillDownFrame:
    """One breadcrumb entry: the units of ``level`` inside ``region_id``."""

    level: int
    region_id: Optional[int]
    region_name: str

    @property
    def is_root(self) -> bool:
        return self.region_id is None

    def to_dict(self) -> dict:
        return {"level": self.level, "regionId": self.region_id, "regionName": self.region_name}


class DrillDownNavigator:
    """Stack of frames whose top is the active map view.

    The root frame shows every district nationally. Drilling into a unit
    pushes a frame listing its children; parishes are terminal.

    Args:
        root_name: Label of the root frame (the country)
        root_level: Level shown by the root frame
        requires_data: Only allow drilling into units that have data
    """

    def __init__(self, root_name: str, root_level: int = ROOT_LEVEL, requires_data: bool = True):
        self.root = DrillDownFrame(level=root_level, region_id=None, region_name=root_name)
        self.requires_data = requires_data
        self._stack: list[DrillDownFrame] = [self.root]

    @property
    def stack(self) -> tuple[DrillDownFrame, ...]:
        return tuple(self._stack)

    @property
    def current(self) -> DrillDownFrame:
        return self._stack[-1]

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def at_root(self) -> bool:
        return len(self._stack) == 1

    def can_drill(self, level: int, has_data: bool = True) -> bool:
        """Whether a unit at ``level`` may be drilled into."""
        if level >= MAX_LEVEL:
            return False
        return has_data or not self.requires_data

    def drill_into(self, unit_id: int, name: str, level: int, has_data: bool = True) -> bool:
        """
        Push a frame listing the children of a unit.

        Returns:
            True if the stack changed; False for parishes, or for units
            without data when data is required
        """
        if not self.can_drill(level, has_data):
            logger.debug("Not drilling into {} (level {}, has_data={})", name, level, has_data)
            return False
        self._stack.append(DrillDownFrame(level=level + 1, region_id=unit_id, region_name=name))
        logger.debug("Drilled into {} -> level {}", name, level + 1)
        return True

    def navigate_to_breadcrumb(self, index: int) -> None:
        """Keep frames up to and including ``index``; -1 returns to the root.

        Out-of-range indices leave the stack unchanged.
        """
        if index == -1:
            self.reset()
            return
        if 0 <= index < len(self._stack):
            del self._stack[index + 1 :]

    def back(self) -> DrillDownFrame:
        """Pop the active frame; the root is never popped."""
        if len(self._stack) > 1:
            self._stack.pop()
        return self.current

    def navigate_to_unit(self, unit_id: int, name: str, level: int) -> bool:
        """Jump straight to the children of a unit found by point lookup.

        Replaces the stack with ``[root, frame]``.

        Returns:
            True if the stack changed; False for parishes
        """
        if level >= MAX_LEVEL:
            return False
        self._stack = [
            self.root,
            DrillDownFrame(level=level + 1, region_id=unit_id, region_name=name),
        ]
        logger.debug("Jumped to {} -> level {}", name, level + 1)
        return True

    def reset(self) -> None:
        self._stack = [self.root]

    def view_key(self, domain: str, variant: Optional[str] = None) -> CacheKey:
        """Cache key of the active view."""
        frame = self.current
        return CacheKey(domain=domain, level=frame.level, parent_id=frame.region_id, variant=variant)
