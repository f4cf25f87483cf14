# tests/test_reorder.py — List-view drop planning
from sdk.reorder import Move, build_rows, parents_in, plan_drop


def _task(task_id, category_id, position, parent=None):
    return {"id": task_id, "category_id": category_id, "position": position, "parent_task_id": parent}


TASKS = [
    _task("P1", "c1", 0),
    _task("P2", "c1", 1),
    _task("P3", "c1", 2),
    _task("S1", "c1", 3, parent="P1"),
    _task("S2", "c1", 4, parent="P1"),
    _task("S3", "c1", 5, parent="P2"),
    _task("Q1", "c2", 0),
    _task("Q2", "c2", 1),
    _task("QS", "c2", 2, parent="Q1"),
]
EXPANDED = {"P1": True, "P2": True}


def test_rows_follow_expansion():
    parents = parents_in(TASKS, "c1")
    assert [p["id"] for p in parents] == ["P1", "P2", "P3"]
    collapsed = build_rows(TASKS, parents, {})
    assert [r.task["id"] for r in collapsed] == ["P1", "P2", "P3"]
    rows = build_rows(TASKS, parents, EXPANDED)
    assert [(r.task["id"], r.is_subtask) for r in rows] == [
        ("P1", False), ("S1", True), ("S2", True), ("P2", False), ("S3", True), ("P3", False),
    ]


def test_no_op_drops():
    assert plan_drop(TASKS, {}, "P1", False, "c1", 0) is None
    assert plan_drop(TASKS, {}, "P1", False, "c1", 0, "c1", 0) is None


def test_parent_within_category():
    assert plan_drop(TASKS, {}, "P1", False, "c1", 0, "c1", 2) == Move("P1", "c1", 2)
    # With P1 expanded, row 3 is P2
    assert plan_drop(TASKS, EXPANDED, "P1", False, "c1", 0, "c1", 3) == Move("P1", "c1", 1)


def test_parent_onto_subtask_row_is_ignored():
    assert plan_drop(TASKS, EXPANDED, "P3", False, "c1", 5, "c1", 1) is None


def test_subtask_reorder_keeps_sibling_slots():
    # S2 above S1: the siblings swap the slots 3 and 4
    assert plan_drop(TASKS, EXPANDED, "S2", True, "c1", 2, "c1", 1) == Move("S2", "c1", 3)
    assert plan_drop(TASKS, EXPANDED, "S1", True, "c1", 1, "c1", 2) == Move("S1", "c1", 4)


def test_subtask_cannot_change_parent_or_category():
    assert plan_drop(TASKS, EXPANDED, "S1", True, "c1", 1, "c1", 4) is None
    assert plan_drop(TASKS, EXPANDED, "S1", True, "c1", 1, "c2", 0) is None


def test_cross_category():
    assert plan_drop(TASKS, {}, "P1", False, "c1", 0, "c2", 0) == Move("P1", "c2", 0)
    assert plan_drop(TASKS, {}, "P1", False, "c1", 0, "c2", 1) == Move("P1", "c2", 1)
    # Past the last row appends
    assert plan_drop(TASKS, {}, "P1", False, "c1", 0, "c2", 7) == Move("P1", "c2", 2)
    # Onto a subtask row lands after its parent
    assert plan_drop(TASKS, {"Q1": True}, "P1", False, "c1", 0, "c2", 1) == Move("P1", "c2", 1)


def test_custom_sort_key():
    def by_id_desc(t):
        return -ord(t["id"][-1])

    assert [p["id"] for p in parents_in(TASKS, "c1", by_id_desc)] == ["P3", "P2", "P1"]
    assert plan_drop(TASKS, {}, "P3", False, "c1", 0, "c1", 2, sort_key=by_id_desc) == Move("P3", "c1", 2)
