from abc import ABC, abstractmethod
from typing import Optional

from academy.access import unlocked_section_ids
from academy.exceptions import AlreadyEnrolled, AlreadyPurchased, NotEnrolled, ValidationFailed
from academy.models import Course, CustomUser, Enrollment, Section
from academy.pricing import course_price, full_access_price, paid_sections, section_price
from academy.schemas import CoursePurchase, PaymentMetadata, SectionPurchase


class PurchaseStrategy(ABC):
    @abstractmethod
    def quote(self) -> int:
        pass

    @abstractmethod
    def ensure_purchasable(self) -> None:
        pass

    @abstractmethod
    def build_metadata(self, user: CustomUser) -> PaymentMetadata:
        pass

    def validate_amount(self, amount: int) -> None:
        expected = self.quote()
        if expected <= 0:
            raise ValidationFailed('Nothing to pay for')
        if amount != expected:
            raise ValidationFailed(f'Amount {amount} does not match price {expected}')


class CourseOnlyStrategy(PurchaseStrategy):
    def __init__(self, course: Course, enrollment: Optional[Enrollment] = None):
        self.course = course
        self.enrollment = enrollment

    def quote(self) -> int:
        return course_price(self.course)

    def ensure_purchasable(self) -> None:
        if self.enrollment and self.enrollment.payment_status == Enrollment.PaymentStatus.COMPLETED:
            raise AlreadyEnrolled()

    def build_metadata(self, user: CustomUser) -> CoursePurchase:
        return CoursePurchase(
            course_id=str(self.course.id),
            user_id=str(user.id),
            include_all_sections=False,
            purchase_type='COURSE_ONLY',
        )


class FullAccessStrategy(CourseOnlyStrategy):
    def quote(self) -> int:
        return full_access_price(self.course)

    def build_metadata(self, user: CustomUser) -> CoursePurchase:
        # premium sections at this moment; later additions are not included
        section_ids = [str(s.id) for s in paid_sections(self.course)]
        return CoursePurchase(
            course_id=str(self.course.id),
            user_id=str(user.id),
            include_all_sections=True,
            paid_section_ids=section_ids,
            purchase_type='FULL_ACCESS',
        )


class SectionStrategy(PurchaseStrategy):
    def __init__(self, section: Section, enrollment: Optional[Enrollment]):
        self.section = section
        self.enrollment = enrollment

    def quote(self) -> int:
        return section_price(self.section)

    def ensure_purchasable(self) -> None:
        if not self.section.is_paid:
            raise ValidationFailed('Invalid section')
        if self.enrollment is None or self.enrollment.payment_status != Enrollment.PaymentStatus.COMPLETED:
            raise NotEnrolled()
        if str(self.section.id) in unlocked_section_ids(self.enrollment):
            raise AlreadyPurchased()

    def build_metadata(self, user: CustomUser) -> SectionPurchase:
        return SectionPurchase(
            section_id=str(self.section.id),
            course_id=str(self.section.course_id),
            user_id=str(user.id),
            enrollment_id=str(self.enrollment.id),
        )


def get_purchase_strategy(course: Course, include_all_sections: bool = False,
                          section: Optional[Section] = None,
                          enrollment: Optional[Enrollment] = None) -> PurchaseStrategy:
    if section is not None:
        return SectionStrategy(section, enrollment)
    if include_all_sections:
        return FullAccessStrategy(course, enrollment)
    return CourseOnlyStrategy(course, enrollment)
