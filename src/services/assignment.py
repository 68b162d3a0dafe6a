"""
Assignment Engine - picks a table or a two-table combination for a party.

Rules:
1) Best-fit single table: smallest seat count that holds the party
2) Otherwise the pair within one join group with the smallest seat sum

Pure functions, no I/O. At most two tables are ever combined.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

from error_handling.exceptions import NoTablesAvailableError


@dataclass(frozen=True)
class TableCandidate:
    """A table as seen by the engine."""
    id: str
    seats: int
    join_group_id: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_model(cls, table) -> "TableCandidate":
        return cls(
            id=table.id,
            seats=table.seats,
            join_group_id=table.join_group_id,
            is_active=table.is_active,
        )


@dataclass(frozen=True)
class TableAssignment:
    """Selected table ids and their combined seat count."""
    table_ids: Tuple[str, ...]
    seats: int

    @property
    def is_combination(self) -> bool:
        return len(self.table_ids) > 1


def free_tables_by_seats(tables: Iterable[TableCandidate], busy: Set[str]) -> List[TableCandidate]:
    """Active, non-busy tables sorted ascending by seats (stable)."""
    free = [t for t in tables if t.is_active and t.id not in busy]
    return sorted(free, key=lambda t: t.seats)


def pick_single_table(tables: List[TableCandidate], party_size: int) -> Optional[TableAssignment]:
    """First table in ascending seat order that holds the whole party."""
    for table in tables:
        if table.seats >= party_size:
            return TableAssignment((table.id,), table.seats)
    return None


def pick_combination(tables: List[TableCandidate], party_size: int) -> Optional[TableAssignment]:
    """
    Best two-table combination within a join group.

    Tables without a join group are never combined. Ties on seat sum keep
    the first pair enumerated.
    """
    groups: Dict[str, List[TableCandidate]] = {}
    for table in tables:
        if not table.join_group_id:
            continue
        groups.setdefault(table.join_group_id, []).append(table)

    best: Optional[TableAssignment] = None
    for group_tables in groups.values():
        for i in range(len(group_tables)):
            for j in range(i + 1, len(group_tables)):
                seats = group_tables[i].seats + group_tables[j].seats
                if seats < party_size:
                    continue
                if best is None or seats < best.seats:
                    best = TableAssignment((group_tables[i].id, group_tables[j].id), seats)
    return best


def select_tables(
    tables: Iterable[TableCandidate],
    busy: Set[str],
    party_size: int,
    restaurant_id: Optional[str] = None
) -> TableAssignment:
    """
    Select table(s) for a party.

    Args:
        tables: The restaurant's tables
        busy: Table ids committed for the window
        party_size: Number of guests
        restaurant_id: Only used for error context

    Returns:
        TableAssignment with one or two table ids

    Raises:
        NoTablesAvailableError: If neither a single table nor a pair fits
    """
    free = free_tables_by_seats(tables, busy)

    assignment = pick_single_table(free, party_size) or pick_combination(free, party_size)
    if assignment is None:
        raise NoTablesAvailableError(
            party_size=party_size,
            restaurant_id=restaurant_id,
            busy_table_ids=list(busy)
        )
    return assignment
