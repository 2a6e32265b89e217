"""Per-user completion progress over an assembled plan tree."""

from __future__ import annotations

from typing import Iterable, Mapping


def percentage(completed: int, total: int) -> int:
    """Return `completed / total` as a whole percentage, halves rounded up.

    An empty plan (total of zero) is 0% complete.
    """
    if total <= 0:
        return 0
    # integer form of floor(completed * 100 / total + 0.5)
    return (200 * completed + total) // (2 * total)


def count_items(weeks: Iterable[Mapping], user_id: str) -> tuple[int, int]:
    """Count `(completed, total)` tasks and subtasks for `user_id`.

    `weeks` is the nested structure produced by the plan tree loader:
    each week has a `tasks` list, each task a `completed_by` list and an
    optional `subtasks` list shaped the same way.
    """
    total = 0
    completed = 0
    for week in weeks:
        for task in week.get("tasks", []):
            total += 1
            if user_id in task.get("completed_by", []):
                completed += 1
            for subtask in task.get("subtasks") or []:
                total += 1
                if user_id in subtask.get("completed_by", []):
                    completed += 1
    return completed, total


def calculate_progress(weeks: Iterable[Mapping], user_id: str) -> int:
    completed, total = count_items(weeks, user_id)
    return percentage(completed, total)
