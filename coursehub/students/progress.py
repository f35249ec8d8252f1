"""
Course completion rules
"""

from typing import Iterable, Optional, Set


def completion_rate(completed_lessons: int, total_lessons: int) -> float:
    """Percentage of lessons completed, 0 for a course without lessons"""
    if total_lessons <= 0:
        return 0.0
    return min(completed_lessons, total_lessons) / total_lessons * 100


def previous_required_lessons(lessons: Iterable, current) -> list:
    return [l for l in lessons if l.is_required and l.order < current.order]


def missing_prerequisites(lessons: Iterable, current, completed_ids: Set[str]) -> list:
    """Previous required lessons the student has not completed yet"""
    return [l for l in previous_required_lessons(lessons, current) if l.id not in completed_ids]


def can_access_lesson(lessons: list, current, completed_ids: Set[str]) -> bool:
    """
    A required lesson opens once every earlier required lesson is completed.
    Optional lessons and the first lesson are always open.
    """
    if not current.is_required:
        return True
    return not missing_prerequisites(lessons, current, completed_ids)


def neighbours(lessons: list, current) -> tuple:
    """(previous, next) lessons by order, None at the ends"""
    ordered = sorted(lessons, key=lambda l: l.order)
    index = next(i for i, l in enumerate(ordered) if l.id == current.id)
    previous_lesson: Optional[object] = ordered[index - 1] if index > 0 else None
    next_lesson: Optional[object] = ordered[index + 1] if index < len(ordered) - 1 else None
    return previous_lesson, next_lesson
