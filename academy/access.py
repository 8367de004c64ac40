"""Which sections and lectures a learner may open.

A course-level "full access" purchase is recorded by copying every premium
section id into ``Enrollment.paid_sections``, so a single membership test
covers both kinds of purchase.
"""
from typing import Any, List, Optional

from academy.models import Enrollment


def unlocked_section_ids(enrollment: Optional[Enrollment]) -> set:
    if enrollment is None:
        return set()
    return {str(sid) for sid in (enrollment.paid_sections or [])}


def is_section_accessible(section, enrollment: Optional[Enrollment]) -> bool:
    if not getattr(section, 'is_paid', False):
        return True
    if enrollment is None or enrollment.payment_status != Enrollment.PaymentStatus.COMPLETED:
        return False
    return str(section.id) in unlocked_section_ids(enrollment)


def is_lecture_accessible(lecture, enrollment: Optional[Enrollment]) -> bool:
    return is_section_accessible(lecture.section, enrollment)


def accessible_sections(course, enrollment: Optional[Enrollment]) -> List[Any]:
    return [s for s in course.sections.all() if is_section_accessible(s, enrollment)]


def accessible_lecture_ids(course, enrollment: Optional[Enrollment]) -> List[Any]:
    ids = []
    for section in accessible_sections(course, enrollment):
        ids.extend(lecture.id for lecture in section.lectures.all())
    return ids


def accessible_lecture_count(course, enrollment: Optional[Enrollment]) -> int:
    return len(accessible_lecture_ids(course, enrollment))
