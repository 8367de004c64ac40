"""
Unit tests for course, section and full-access pricing.
"""

from types import SimpleNamespace

import pytest

from academy.pricing import (
    course_price,
    full_access_price,
    paid_sections,
    price_breakdown,
    section_price,
    validate_payment_amount,
)


def _course(is_paid=True, price=5000, sections=()):
    return SimpleNamespace(is_paid=is_paid, price=price, sections=list(sections))


def _section(sid, is_paid=False, price=None):
    return SimpleNamespace(id=sid, is_paid=is_paid, price=price)


class TestCoursePrice:
    def test_paid_course_uses_its_price(self):
        assert course_price(_course(price=5000)) == 5000

    def test_free_course_is_zero_even_with_price(self):
        """A stale price on a free course is ignored."""
        assert course_price(_course(is_paid=False, price=5000)) == 0

    @pytest.mark.parametrize("price", [None, -10, "abc", 0])
    def test_missing_or_malformed_price_is_zero(self, price):
        assert course_price(_course(price=price)) == 0


class TestSectionPrice:
    def test_free_section_is_zero(self):
        assert section_price(_section("s1", is_paid=False, price=900)) == 0

    def test_paid_section_price(self):
        assert section_price(_section("s1", is_paid=True, price=2000)) == 2000

    def test_paid_section_without_price_is_zero(self):
        assert section_price(_section("s1", is_paid=True, price=None)) == 0


class TestFullAccessPrice:
    def test_sums_course_and_premium_sections(self):
        course = _course(price=5000, sections=[
            _section("s1"),
            _section("s2", is_paid=True, price=2000),
            _section("s3", is_paid=True, price=1500),
        ])
        assert full_access_price(course) == 8500

    def test_independent_of_section_order(self):
        sections = [_section("a", True, 300), _section("b", True, 700), _section("c")]
        assert full_access_price(_course(sections=sections)) == full_access_price(_course(sections=sections[::-1]))

    def test_free_course_with_premium_sections(self):
        course = _course(is_paid=False, price=None, sections=[_section("s1", True, 1200)])
        assert full_access_price(course) == 1200

    def test_no_sections(self):
        assert full_access_price(_course(price=5000)) == 5000


class TestPriceBreakdown:
    def test_breakdown_lists_premium_sections(self):
        course = _course(price=5000, sections=[_section("s1"), _section("s2", True, 2000)])
        breakdown = price_breakdown(course)
        assert breakdown == {
            "course_price": 5000,
            "sections_price": 2000,
            "total_price": 7000,
            "paid_sections": [{"id": "s2", "price": 2000}],
        }

    def test_paid_sections_filters_free(self):
        course = _course(sections=[_section("s1"), _section("s2", True, 2000)])
        assert [s.id for s in paid_sections(course)] == ["s2"]


class TestValidatePaymentAmount:
    def test_course_only_amount(self):
        course = _course(price=5000, sections=[_section("s2", True, 2000)])
        assert validate_payment_amount(course, 5000, include_all_sections=False)
        assert not validate_payment_amount(course, 7000, include_all_sections=False)

    def test_full_access_amount(self):
        course = _course(price=5000, sections=[_section("s2", True, 2000)])
        assert validate_payment_amount(course, 7000, include_all_sections=True)
        assert not validate_payment_amount(course, 5000, include_all_sections=True)


@pytest.mark.django_db
def test_pricing_reads_model_sections(paid_course):
    assert full_access_price(paid_course) == 7000
