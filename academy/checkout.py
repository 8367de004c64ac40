import logging
from typing import Any, Dict

from academy.exceptions import NotFound, ValidationFailed
from academy.models import CustomUser
from academy.repositories import CourseRepository, EnrollmentRepository, SectionRepository
from academy.services import EnrollmentLedger
from academy.strategies import get_purchase_strategy

logger = logging.getLogger(__name__)


class CheckoutService:
    """Quotes a purchase, opens a gateway transaction and records it on the ledger.

    The ledger is only touched after the gateway accepted the transaction.
    """

    def __init__(self, gateway, callback_url: str):
        self.gateway = gateway
        self.callback_url = callback_url

    def initialize_course(self, user: CustomUser, course_id: str, amount: int,
                          include_all_sections: bool = False) -> Dict[str, Any]:
        course = CourseRepository.get_active_with_content(course_id)
        if not course:
            raise NotFound('Course not found or inactive')

        enrollment = EnrollmentRepository.get_for(user.id, course.id)
        strategy = get_purchase_strategy(course, include_all_sections, enrollment=enrollment)
        strategy.ensure_purchasable()
        strategy.validate_amount(amount)

        reference = self.gateway.generate_reference()
        metadata = strategy.build_metadata(user)
        logger.info('Initializing payment reference=%s amount=%s course=%s type=%s user=%s',
                    reference, amount, course.id, metadata.purchase_type, user.id)

        transaction = self.gateway.initialize(amount, user.email, reference, self.callback_url, metadata.to_payload())
        enrollment = EnrollmentLedger.begin_paid_enrollment(user, course, reference, metadata.to_payload())
        return {
            'authorization_url': transaction.authorization_url,
            'reference': reference,
            'course_id': str(course.id),
            'enrollment_id': str(enrollment.id),
        }

    def initialize_section(self, user: CustomUser, section_id: str, course_id: str, amount: int) -> Dict[str, Any]:
        section = SectionRepository.get(section_id)
        if not section:
            raise NotFound('Section not found')
        if str(section.course_id) != str(course_id):
            raise ValidationFailed('Section does not belong to this course')

        enrollment = EnrollmentRepository.get_for(user.id, section.course_id)
        strategy = get_purchase_strategy(section.course, section=section, enrollment=enrollment)
        strategy.ensure_purchasable()
        strategy.validate_amount(amount)

        reference = self.gateway.generate_reference()
        metadata = strategy.build_metadata(user)
        logger.info('Initializing section payment reference=%s amount=%s section=%s enrollment=%s user=%s',
                    reference, amount, section.id, enrollment.id, user.id)

        transaction = self.gateway.initialize(
            amount, user.email, reference, f'{self.callback_url}?type=section', metadata.to_payload(),
        )
        return {
            'authorization_url': transaction.authorization_url,
            'reference': reference,
            'course_id': str(section.course_id),
            'enrollment_id': str(enrollment.id),
        }
