"""Course, section and full-access pricing in minor currency units."""
from typing import Any, Dict, Iterable, List


def _amount(value: Any) -> int:
    try:
        amount = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return amount if amount > 0 else 0


def _sections(course) -> Iterable[Any]:
    sections = getattr(course, 'sections', None) or []
    if hasattr(sections, 'all'):
        return sections.all()
    return sections


def course_price(course) -> int:
    return _amount(getattr(course, 'price', 0)) if getattr(course, 'is_paid', False) else 0


def section_price(section) -> int:
    return _amount(getattr(section, 'price', 0)) if getattr(section, 'is_paid', False) else 0


def paid_sections(course) -> List[Any]:
    return [s for s in _sections(course) if getattr(s, 'is_paid', False)]


def full_access_price(course) -> int:
    return course_price(course) + sum(section_price(s) for s in paid_sections(course))


def price_breakdown(course) -> Dict[str, Any]:
    sections = [{'id': str(s.id), 'price': section_price(s)} for s in paid_sections(course)]
    sections_price = sum(s['price'] for s in sections)
    return {
        'course_price': course_price(course),
        'sections_price': sections_price,
        'total_price': course_price(course) + sections_price,
        'paid_sections': sections,
    }


def validate_payment_amount(course, amount: int, include_all_sections: bool) -> bool:
    expected = full_access_price(course) if include_all_sections else course_price(course)
    return expected == amount
