"""
Tests for certificate policy evaluation and issuance.
"""

import pytest
from django.utils import timezone

from academy.certificates import CertificationEngine, render_certificate, round_half_up, score_percent
from academy.exceptions import ObjectStoreUnavailable
from academy.models import Certificate


class TestScorePercent:
    @pytest.mark.parametrize("total,maximum,expected", [
        (0, 0, 0),
        (2, 4, 50),
        (13, 20, 65),
        (29, 40, 73),
        (1, 8, 13),
        (40, 40, 100),
    ])
    def test_rounds_half_up(self, total, maximum, expected):
        assert score_percent(total, maximum) == expected

    def test_round_half_up(self):
        assert round_half_up(69.5) == 70
        assert round_half_up(69.49) == 69


def test_render_certificate_produces_pdf():
    data = render_certificate("Ada Lovelace", "Analytical Engines", "January 01, 2025", score=90,
                              certificate_id="abc")
    assert data.startswith(b"%PDF")


@pytest.mark.django_db
class TestCertificationEngine:
    @pytest.fixture
    def course(self, make_course):
        return make_course(certificate_enabled=True, certificate_require_completion=True,
                           certificate_require_min_score=True, certificate_min_score=70)

    def _finished(self, enroll, student, course, total, maximum, progress=100):
        return enroll(student, course, progress_percent=progress, total_score=total,
                      max_possible_score=maximum, completed_at=timezone.now())

    def test_disabled_course(self, student, make_course, enroll, object_store):
        course = make_course(certificate_enabled=False)
        decision = CertificationEngine(object_store).evaluate(self._finished(enroll, student, course, 10, 10))
        assert not decision.issued
        assert decision.reason == "Certificates not enabled for this course"

    def test_incomplete_course(self, student, course, enroll, object_store):
        enrollment = self._finished(enroll, student, course, 10, 10, progress=90)
        decision = CertificationEngine(object_store).evaluate(enrollment)
        assert not decision.issued
        assert decision.reason == "Course completion required for certificate"

    def test_score_below_minimum(self, student, course, enroll, object_store):
        decision = CertificationEngine(object_store).evaluate(self._finished(enroll, student, course, 13, 20))
        assert not decision.issued
        assert decision.reason == "Minimum score of 70% required"
        assert not object_store.objects

    def test_issues_certificate(self, student, course, enroll, object_store):
        decision = CertificationEngine(object_store, "Test Academy").evaluate(
            self._finished(enroll, student, course, 15, 20),
        )
        assert decision.issued
        assert decision.certificate.image_url in object_store.objects
        data, content_type = object_store.objects[decision.certificate.image_url]
        assert content_type == "application/pdf"
        assert data.startswith(b"%PDF")

    def test_issued_at_most_once(self, student, course, enroll, object_store):
        enrollment = self._finished(enroll, student, course, 15, 20)
        engine = CertificationEngine(object_store)
        first = engine.evaluate(enrollment)
        second = engine.evaluate(enrollment)
        assert first.issued
        assert not second.issued
        assert second.certificate.id == first.certificate.id
        assert Certificate.objects.filter(user=student, course=course).count() == 1
        assert len(object_store.objects) == 1

    def test_no_score_requirement(self, student, make_course, enroll, object_store):
        course = make_course(certificate_enabled=True, certificate_require_min_score=False)
        decision = CertificationEngine(object_store).evaluate(self._finished(enroll, student, course, 0, 0))
        assert decision.issued

    def test_store_failure_leaves_no_row(self, student, course, enroll, object_store):
        object_store.unavailable = True
        with pytest.raises(ObjectStoreUnavailable):
            CertificationEngine(object_store).evaluate(self._finished(enroll, student, course, 20, 20))
        assert not Certificate.objects.exists()
