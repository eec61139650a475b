"""Query functions for Reviewgate database operations.

Each function takes an AsyncSession and performs one focused read or write.
"""

from reviewgate.database.queries.change import (
    get_change_record,
    insert_change,
    list_change_records,
    update_change_record,
)
from reviewgate.database.queries.stage_result import (
    get_latest_stage_result,
    insert_finding_resolution,
    insert_stage_result,
    list_resolved_finding_ids,
    list_stage_results,
)

__all__ = [
    "insert_change",
    "get_change_record",
    "update_change_record",
    "list_change_records",
    "insert_stage_result",
    "get_latest_stage_result",
    "list_stage_results",
    "insert_finding_resolution",
    "list_resolved_finding_ids",
]
