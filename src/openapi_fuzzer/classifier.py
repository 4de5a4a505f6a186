"""Decides whether an observed response status is allowed for an operation."""

from typing import Collection


def is_expected(status: int, declared: Collection[int], ignored: Collection[int] = ()) -> bool:
    """Ignored statuses always pass. Declared statuses pass unless they are 5xx.

    A server error is a defect even when the API document declares it.
    """
    if status in ignored:
        return True
    return status in declared and status // 100 != 5
