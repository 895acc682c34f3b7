import uuid
from typing import Awaitable, Callable, Iterable

ChildLookup = Callable[[uuid.UUID], Awaitable[Iterable[uuid.UUID]]]

async def location_descendants(location_id: uuid.UUID, children_of: ChildLookup) -> set[uuid.UUID]:
    """
    All locations below `location_id` (the location itself excluded).

    Walks the hierarchy with an explicit worklist; the visited set makes a
    corrupted parent chain (a cycle) terminate instead of looping forever.
    """
    descendants: set[uuid.UUID] = set()
    visited: set[uuid.UUID] = {location_id}
    worklist = [location_id]
    while worklist:
        current = worklist.pop()
        for child in await children_of(current):
            if child in visited:
                continue
            visited.add(child)
            descendants.add(child)
            worklist.append(child)
    return descendants
