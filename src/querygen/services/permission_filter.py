"""
Table permission filter.

Maps the tables a query needs to the permission keys the caller lacks,
driven by a static per-deployment table -> permission-key map.
"""

from typing import Dict, Iterable, List, Mapping


def normalize_table_name(table: str) -> str:
    """Lower-case a table name and strip any schema prefix ("public.Employees" -> "employees")."""
    return table.lower().split(".")[-1]


class PermissionFilter:
    """
    Pure permission check.

    Usage:
        permission_filter = PermissionFilter({"employees": "view_employees"})
        permission_filter.missing(["public.employees"], {"view_currencies"})
        # ["view_employees"]
    """

    def __init__(self, table_permissions: Mapping[str, str]):
        self._table_permissions: Dict[str, str] = {
            normalize_table_name(table): key for table, key in table_permissions.items()
        }

    def required(self, tables: Iterable[str]) -> List[str]:
        """Permission keys needed for `tables`, first occurrence order, without duplicates."""
        keys: List[str] = []
        for table in tables:
            key = self._table_permissions.get(normalize_table_name(table))
            if key is not None and key not in keys:
                keys.append(key)
        return keys

    def missing(self, tables: Iterable[str], granted: Iterable[str]) -> List[str]:
        """Permission keys required by `tables` that are not in `granted`."""
        granted_set = set(granted)
        return [key for key in self.required(tables) if key not in granted_set]
