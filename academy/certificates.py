"""
Certificate policy evaluation and issuance.

Issuance is exactly-once per (user, course): the existence check runs before
rendering and the (user, course) unique constraint backs it up when two
evaluations race. The certificate row is only written after the rendered PDF
has been stored, so a row never points at a missing artifact.
"""
import io
import logging
import math
import uuid
from typing import NamedTuple, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone
from reportlab.lib.pagesizes import A4, landscape
from reportlab.pdfgen import canvas

from academy.models import Certificate, Enrollment
from academy.repositories import CertificateRepository

logger = logging.getLogger(__name__)

CONTENT_TYPE = 'application/pdf'


class CertificateDecision(NamedTuple):
    issued: bool
    certificate: Optional[Certificate]
    reason: str


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_percent(total_score: int, max_possible_score: int) -> int:
    if not max_possible_score:
        return 0
    return round_half_up(total_score / max_possible_score * 100)


def render_certificate(student: str, course_title: str, issued_on: str, score: Optional[int] = None,
                       platform_name: str = 'LambAcademy', certificate_id: Optional[str] = None) -> bytes:
    buffer = io.BytesIO()
    width, height = landscape(A4)
    p = canvas.Canvas(buffer, pagesize=(width, height))
    p.setTitle(f'{course_title} - Certificate of Completion')

    p.setLineWidth(4)
    p.rect(30, 30, width - 60, height - 60)

    p.setFont('Helvetica-Bold', 22)
    p.drawString(60, height - 80, platform_name)

    p.setFont('Helvetica-Bold', 36)
    p.drawCentredString(width / 2, height - 170, 'Certificate of Completion')

    p.setFont('Helvetica', 16)
    p.drawCentredString(width / 2, height - 230, 'This certifies that')
    p.setFont('Helvetica-Bold', 30)
    p.drawCentredString(width / 2, height - 275, student)

    p.setFont('Helvetica', 16)
    p.drawCentredString(width / 2, height - 320, 'has successfully completed the course')
    p.setFont('Helvetica-Bold', 24)
    p.drawCentredString(width / 2, height - 360, course_title)

    if score is not None:
        p.setFont('Helvetica', 16)
        p.drawCentredString(width / 2, height - 395, f'Final Score: {score}%')

    p.setFont('Helvetica', 14)
    p.drawString(60, 90, f'Issued on: {issued_on}')
    if certificate_id:
        p.setFont('Helvetica', 10)
        p.drawString(60, 65, f'Certificate ID: {certificate_id}')

    p.showPage()
    p.save()
    return buffer.getvalue()


class CertificationEngine:
    def __init__(self, store, platform_name: str = 'LambAcademy'):
        self.store = store
        self.platform_name = platform_name

    def evaluate(self, enrollment: Enrollment) -> CertificateDecision:
        course = enrollment.course

        if not course.certificate_enabled:
            return CertificateDecision(False, None, 'Certificates not enabled for this course')

        if course.certificate_require_completion and enrollment.progress_percent < 100:
            return CertificateDecision(False, None, 'Course completion required for certificate')

        percent = score_percent(enrollment.total_score, enrollment.max_possible_score)
        if course.certificate_require_min_score:
            required = round_half_up(course.certificate_min_score)
            if percent < required:
                return CertificateDecision(False, None, f'Minimum score of {required}% required')

        existing = CertificateRepository.get_for(enrollment.user_id, course.id)
        if existing:
            return CertificateDecision(False, existing, 'Certificate already issued')

        return self._issue(enrollment, percent if course.certificate_require_min_score else None)

    def _issue(self, enrollment: Enrollment, score: Optional[int]) -> CertificateDecision:
        course = enrollment.course
        certificate_id = uuid.uuid4()
        artifact = render_certificate(
            student=enrollment.user.full_name,
            course_title=course.title,
            issued_on=timezone.now().strftime('%B %d, %Y'),
            score=score,
            platform_name=self.platform_name,
            certificate_id=str(certificate_id),
        )
        # ObjectStoreUnavailable propagates; nothing has been written yet
        url = self.store.put(artifact, CONTENT_TYPE)

        try:
            with transaction.atomic():
                certificate = CertificateRepository.create(
                    enrollment.user_id, course.id, url, certificate_id=certificate_id,
                )
        except IntegrityError:
            logger.warning(
                'Certificate for user %s course %s issued concurrently; artifact %s is unused',
                enrollment.user_id, course.id, url,
            )
            return CertificateDecision(False, CertificateRepository.get_for(enrollment.user_id, course.id),
                                       'Certificate already issued')

        logger.info('Issued certificate %s for user %s course %s', certificate.id, enrollment.user_id, course.id)
        return CertificateDecision(True, certificate, 'Certificate issued')
