# sdk/reorder.py — Map a list-view drag-and-drop onto a position update
#
# The list view renders, per category, each parent task followed by its
# subtasks when the parent is expanded. A drop reports indexes into those
# rendered rows; plan_drop turns that into the (task_id, category_id, position)
# triple PATCH /tasks/{id}/position expects.

from collections import namedtuple
from typing import Callable, Dict, List, Optional

Move = namedtuple("Move", ["task_id", "category_id", "position"])
Row = namedtuple("Row", ["task", "is_subtask", "parent_id"])


def _by_position(task: dict):
    return task.get("position") or 0


def parents_in(tasks: List[dict], category_id, sort_key: Callable = _by_position) -> List[dict]:
    return sorted(
        [t for t in tasks if t.get("category_id") == category_id and not t.get("parent_task_id")],
        key=sort_key,
    )


def subtasks_of(tasks: List[dict], parent_id: str) -> List[dict]:
    return [t for t in tasks if t.get("parent_task_id") == parent_id]


def build_rows(tasks: List[dict], parents: List[dict], expanded: Dict[str, bool]) -> List[Row]:
    """Rows in render order: each parent, then its subtasks if expanded"""
    rows = []
    for parent in parents:
        rows.append(Row(parent, False, None))
        if expanded.get(parent["id"]):
            rows.extend(Row(sub, True, parent["id"]) for sub in subtasks_of(tasks, parent["id"]))
    return rows


def _cross_category(tasks, expanded, task_id, dest_category_id, dest_index, sort_key) -> Move:
    dest_parents = parents_in(tasks, dest_category_id, sort_key)
    dest_rows = build_rows(tasks, dest_parents, expanded)
    dest_ids = [p["id"] for p in dest_parents]

    if dest_index >= len(dest_rows):
        position = len(dest_parents)
    else:
        row = dest_rows[dest_index]
        if row.is_subtask:
            # Onto a subtask row: land right after its parent
            parent_id = row.task.get("parent_task_id")
            position = dest_ids.index(parent_id) + 1 if parent_id in dest_ids else len(dest_parents)
        else:
            position = dest_ids.index(row.task["id"])
    return Move(task_id, dest_category_id, position)


def plan_drop(
    tasks: List[dict],
    expanded: Dict[str, bool],
    task_id: str,
    is_subtask: bool,
    source_category_id,
    source_index: int,
    dest_category_id=None,
    dest_index: Optional[int] = None,
    sort_key: Callable = _by_position,
) -> Optional[Move]:
    """Return the position update for a drop, or None when nothing should change.

    dest_index None means the item was dropped outside any list. Subtasks only
    move within their own parent; parents cannot be dropped onto subtask rows.
    """
    if dest_index is None:
        return None
    if dest_category_id == source_category_id and dest_index == source_index:
        return None

    if source_category_id != dest_category_id:
        if is_subtask:
            return None
        return _cross_category(tasks, expanded, task_id, dest_category_id, dest_index, sort_key)

    parents = parents_in(tasks, dest_category_id, sort_key)
    rows = build_rows(tasks, parents, expanded)
    if source_index >= len(rows) or dest_index >= len(rows):
        return None
    source_row, dest_row = rows[source_index], rows[dest_index]

    if not is_subtask:
        if source_row.is_subtask or dest_row.is_subtask:
            return None
        parent_ids = [p["id"] for p in parents]
        if task_id not in parent_ids:
            return None
        return Move(task_id, dest_category_id, parent_ids.index(dest_row.task["id"]))

    if not (source_row.is_subtask and dest_row.is_subtask):
        return None
    if source_row.parent_id != dest_row.parent_id:
        return None

    siblings = subtasks_of(tasks, source_row.parent_id)
    sibling_ids = [s["id"] for s in siblings]
    if task_id not in sibling_ids:
        return None
    reordered = list(siblings)
    moved = reordered.pop(sibling_ids.index(task_id))
    reordered.insert(sibling_ids.index(dest_row.task["id"]), moved)

    # Siblings keep the slots they occupy in the category's overall order
    in_category = sorted([t for t in tasks if t.get("category_id") == dest_category_id], key=_by_position)
    slots = iter(reordered)
    new_order = [next(slots, t) if t.get("parent_task_id") == source_row.parent_id else t for t in in_category]
    new_ids = [t["id"] for t in new_order]
    if task_id not in new_ids:
        return None
    return Move(task_id, dest_category_id, new_ids.index(task_id))
