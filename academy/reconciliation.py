"""
Applies gateway payment outcomes to the enrollment ledger.

An outcome can arrive through the signed webhook, through the learner's
browser returning to the callback page (verify), or both, in any order and
any number of times. Both channels end in ``apply_outcome``, whose effect is
the same whether it runs once or repeatedly.
"""
import logging
from typing import NamedTuple, Optional

from pydantic import ValidationError

from academy.exceptions import (
    AlreadyPurchased,
    AuthenticationFailed,
    ContradictoryOutcome,
    NotEnrolled,
    PermissionDenied,
    ValidationFailed,
)
from academy.models import CustomUser, Enrollment
from academy.payments import validate_webhook_signature
from academy.repositories import EnrollmentRepository, SectionRepository
from academy.schemas import (
    CoursePurchase,
    PaymentMetadata,
    SectionPurchase,
    WebhookEvent,
    parse_payment_metadata,
)
from academy.services import EnrollmentLedger, OutcomeStatus

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = 'charge.success'
CHARGE_FAILED = 'charge.failed'


class ReconciliationResult(NamedTuple):
    status: OutcomeStatus
    succeeded: bool
    enrollment: Optional[Enrollment] = None
    course_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.succeeded and self.status in (OutcomeStatus.APPLIED, OutcomeStatus.DUPLICATE)


class ReconciliationService:
    def __init__(self, gateway, webhook_secret: str):
        self.gateway = gateway
        self.webhook_secret = webhook_secret

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> ReconciliationResult:
        if not signature:
            raise AuthenticationFailed('Missing signature')
        if not validate_webhook_signature(raw_body, signature, self.webhook_secret):
            logger.warning('Rejected webhook with invalid signature')
            raise AuthenticationFailed('Invalid signature')

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except ValidationError:
            raise ValidationFailed('Malformed webhook payload')

        if event.event == CHARGE_SUCCESS:
            if event.data.status != 'success':
                logger.info('charge.success for %s with status %s ignored', event.data.reference, event.data.status)
                return ReconciliationResult(OutcomeStatus.IGNORED, False)
            succeeded = True
        elif event.event == CHARGE_FAILED:
            succeeded = False
        else:
            logger.debug('Ignoring webhook event %s', event.event)
            return ReconciliationResult(OutcomeStatus.IGNORED, False)

        metadata = parse_payment_metadata(event.data.metadata)
        return self.apply_outcome(event.data.reference, succeeded, metadata)

    def verify_course_payment(self, reference: str, user: CustomUser) -> ReconciliationResult:
        return self._verify(reference, user, CoursePurchase)

    def verify_section_payment(self, reference: str, user: CustomUser) -> ReconciliationResult:
        return self._verify(reference, user, SectionPurchase)

    def _verify(self, reference: str, user: CustomUser, expected_kind) -> ReconciliationResult:
        # GatewayUnavailable propagates and leaves the ledger untouched
        transaction = self.gateway.verify(reference)
        metadata = parse_payment_metadata(transaction.metadata)
        if not isinstance(metadata, expected_kind):
            raise ValidationFailed('Reference belongs to a different kind of purchase')
        if metadata.user_id != str(user.id):
            raise PermissionDenied('Payment belongs to another user')

        if not transaction.is_final:
            logger.info('Transaction %s still %s; leaving enrollment pending', reference, transaction.status)
            return ReconciliationResult(OutcomeStatus.PENDING, False, course_id=metadata.course_id)

        return self.apply_outcome(reference, transaction.succeeded, metadata)

    def apply_outcome(self, reference: str, succeeded: bool, metadata: PaymentMetadata) -> ReconciliationResult:
        if isinstance(metadata, SectionPurchase):
            return self._settle_section(reference, succeeded, metadata)

        try:
            outcome = EnrollmentLedger.apply_payment_outcome(reference, succeeded, metadata)
        except ContradictoryOutcome:
            return ReconciliationResult(OutcomeStatus.CONFLICT, succeeded, course_id=metadata.course_id)
        return ReconciliationResult(outcome.status, succeeded, outcome.enrollment, metadata.course_id)

    def _settle_section(self, reference: str, succeeded: bool, metadata: SectionPurchase) -> ReconciliationResult:
        if not succeeded:
            logger.info('Section payment %s failed for section %s', reference, metadata.section_id)
            return ReconciliationResult(OutcomeStatus.APPLIED, False, course_id=metadata.course_id)

        enrollment = EnrollmentRepository.get(metadata.enrollment_id)
        if enrollment is None or str(enrollment.user_id) != metadata.user_id \
                or str(enrollment.course_id) != metadata.course_id:
            enrollment = EnrollmentRepository.get_for(metadata.user_id, metadata.course_id)

        section = SectionRepository.get(metadata.section_id)
        if enrollment is None or section is None or str(section.course_id) != metadata.course_id:
            logger.error('Unreconciled section payment: reference=%s metadata=%s', reference, metadata.to_payload())
            return ReconciliationResult(OutcomeStatus.LOST, True, course_id=metadata.course_id)

        try:
            enrollment = EnrollmentLedger.purchase_section(enrollment.id, section.id)
        except AlreadyPurchased:
            logger.debug('Duplicate section payment %s for section %s', reference, section.id)
            return ReconciliationResult(OutcomeStatus.DUPLICATE, True, enrollment, metadata.course_id)
        except NotEnrolled:
            logger.error('Section payment %s for enrollment %s which is not paid up: metadata=%s',
                         reference, enrollment.id, metadata.to_payload())
            return ReconciliationResult(OutcomeStatus.LOST, True, enrollment, metadata.course_id)

        logger.info('Section payment %s applied to enrollment %s', reference, enrollment.id)
        return ReconciliationResult(OutcomeStatus.APPLIED, True, enrollment, metadata.course_id)
