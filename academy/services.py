import logging
from datetime import datetime, time
from enum import Enum
from typing import Tuple, Optional, Dict, Any, List, NamedTuple

from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from academy.access import (
    accessible_lecture_ids,
    is_section_accessible,
    unlocked_section_ids,
)
from academy.exceptions import (
    AlreadyEnrolled,
    AlreadyPurchased,
    ContentLocked,
    ContradictoryOutcome,
    CourseIsPaid,
    NotEnrolled,
    NotFound,
    ValidationFailed,
)
from academy.models import Course, CustomUser, Enrollment, Lecture
from academy.pricing import price_breakdown, section_price
from academy.repositories import (
    AssignmentRepository,
    AttemptRepository,
    CertificateRepository,
    CourseRepository,
    EnrollmentRepository,
    LectureRepository,
    ProgressRepository,
    QuizRepository,
    SectionRepository,
    SubmissionRepository,
)
from academy.schemas import CoursePurchase

logger = logging.getLogger(__name__)

PaymentStatus = Enrollment.PaymentStatus


class OutcomeStatus(str, Enum):
    APPLIED = 'APPLIED'
    DUPLICATE = 'DUPLICATE'
    CONFLICT = 'CONFLICT'
    STALE = 'STALE'
    LOST = 'LOST'
    PENDING = 'PENDING'
    IGNORED = 'IGNORED'


class LedgerOutcome(NamedTuple):
    status: OutcomeStatus
    enrollment: Optional[Enrollment]


def _due_date(content: Dict[str, Any]):
    raw = content.get('due_date') or content.get('dueDate')
    if not raw:
        return None
    # well-formed but impossible dates (2024-02-30) raise ValueError
    try:
        value = parse_datetime(str(raw))
        day = parse_date(str(raw)) if value is None else None
    except ValueError:
        raise ValidationFailed('Invalid assignment due date')
    if value is None:
        if day is None:
            raise ValidationFailed('Invalid assignment due date')
        value = datetime.combine(day, time.max)
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


def _merge_ids(existing: List[Any], granted: List[Any]) -> List[str]:
    merged = [str(i) for i in (existing or [])]
    for sid in granted or []:
        if str(sid) not in merged:
            merged.append(str(sid))
    return merged


class EnrollmentLedger:
    """Payment and progress state per (user, course).

    Mutations run as a locked read-modify-write on the single enrollment row;
    payment transitions additionally use a ``payment_status = PENDING``
    predicate on the UPDATE and check the affected row count.
    """

    @staticmethod
    def begin_paid_enrollment(user: CustomUser, course: Course, reference: str,
                              metadata: Optional[Dict[str, Any]] = None) -> Enrollment:
        with transaction.atomic():
            enrollment = EnrollmentRepository.lock_for(user.id, course.id)
            if enrollment is None:
                try:
                    with transaction.atomic():
                        return EnrollmentRepository.create(
                            user, course, payment_reference=reference, payment_status=PaymentStatus.PENDING,
                        )
                except IntegrityError:
                    enrollment = EnrollmentRepository.lock_for(user.id, course.id)

            if enrollment.payment_status == PaymentStatus.COMPLETED:
                raise AlreadyEnrolled()

            if enrollment.payment_status == PaymentStatus.PENDING and enrollment.payment_reference:
                # single flight per course: the newer transaction replaces the older one
                logger.info('Enrollment %s: abandoning pending reference %s for %s',
                            enrollment.id, enrollment.payment_reference, reference)

            enrollment.payment_reference = reference
            enrollment.payment_status = PaymentStatus.PENDING
            enrollment.save(update_fields=['payment_reference', 'payment_status', 'updated_at'])
            logger.info('Enrollment %s pending on %s (metadata=%s)', enrollment.id, reference, metadata)
            return enrollment

    @staticmethod
    def enroll_free(user: CustomUser, course: Course) -> Enrollment:
        if course.is_paid:
            raise CourseIsPaid()
        if EnrollmentRepository.get_for(user.id, course.id):
            raise AlreadyEnrolled()
        try:
            with transaction.atomic():
                enrollment = EnrollmentRepository.create(user, course, payment_status=PaymentStatus.COMPLETED)
        except IntegrityError:
            raise AlreadyEnrolled()
        logger.info('User %s enrolled in free course %s', user.id, course.id)
        return enrollment

    @staticmethod
    def apply_payment_outcome(reference: str, succeeded: bool, metadata: CoursePurchase) -> LedgerOutcome:
        target = PaymentStatus.COMPLETED if succeeded else PaymentStatus.FAILED

        with transaction.atomic():
            enrollment = EnrollmentRepository.lock_by_reference(reference)

            if enrollment is None:
                enrollment = EnrollmentRepository.lock_pending_for(metadata.user_id, metadata.course_id)
                if (enrollment is not None and not succeeded
                        and enrollment.payment_reference and enrollment.payment_reference != reference):
                    # the pending row belongs to a newer, still-live transaction
                    logger.warning('Ignoring failure for superseded reference %s (enrollment %s is on %s)',
                                   reference, enrollment.id, enrollment.payment_reference)
                    return LedgerOutcome(OutcomeStatus.STALE, enrollment)
                if enrollment is None:
                    logger.error('Unreconciled payment outcome: reference=%s succeeded=%s metadata=%s',
                                 reference, succeeded, metadata.to_payload())
                    return LedgerOutcome(OutcomeStatus.LOST, None)
                logger.info('Enrollment %s adopting reference %s', enrollment.id, reference)

            if enrollment.payment_status == target:
                logger.debug('Duplicate %s outcome for %s', target, reference)
                return LedgerOutcome(OutcomeStatus.DUPLICATE, enrollment)

            if enrollment.payment_status != PaymentStatus.PENDING:
                logger.warning('Rejected contradictory outcome %s for %s: enrollment %s is %s',
                               target, reference, enrollment.id, enrollment.payment_status)
                raise ContradictoryOutcome()

            fields = {'payment_status': target, 'payment_reference': reference, 'updated_at': timezone.now()}
            granted = []
            if succeeded and metadata.include_all_sections:
                granted = metadata.paid_section_ids
                if granted is None:
                    granted = SectionRepository.paid_section_ids(enrollment.course_id)
                fields['paid_sections'] = _merge_ids(enrollment.paid_sections, granted)

            if EnrollmentRepository.transition_pending(enrollment.id, **fields) == 0:
                enrollment.refresh_from_db()
                if enrollment.payment_status == target:
                    return LedgerOutcome(OutcomeStatus.DUPLICATE, enrollment)
                raise ContradictoryOutcome()

            enrollment.refresh_from_db()

        logger.info('Enrollment %s -> %s via %s (sections granted: %s)', enrollment.id, target, reference, granted)
        return LedgerOutcome(OutcomeStatus.APPLIED, enrollment)

    @staticmethod
    def purchase_section(enrollment_id, section_id) -> Enrollment:
        with transaction.atomic():
            enrollment = EnrollmentRepository.lock(enrollment_id)
            if enrollment is None:
                raise NotFound('Enrollment not found')
            if enrollment.payment_status != PaymentStatus.COMPLETED:
                raise NotEnrolled()
            if str(section_id) in unlocked_section_ids(enrollment):
                raise AlreadyPurchased()
            enrollment.paid_sections = _merge_ids(enrollment.paid_sections, [section_id])
            enrollment.save(update_fields=['paid_sections', 'updated_at'])
        logger.info('Enrollment %s unlocked section %s', enrollment.id, section_id)
        return enrollment

    @staticmethod
    def record_progress(enrollment_id, new_percent: int) -> Tuple[Enrollment, bool]:
        """Set progress; stamps ``completed_at`` the first time it reaches 100.

        Returns the enrollment and whether this call completed the course.
        Lower values than the stored one are accepted as given.
        """
        if isinstance(new_percent, bool) or not isinstance(new_percent, int) or not 0 <= new_percent <= 100:
            raise ValidationFailed('Progress must be an integer between 0 and 100')

        with transaction.atomic():
            enrollment = EnrollmentRepository.lock(enrollment_id)
            if enrollment is None:
                raise NotFound('Enrollment not found')
            enrollment.progress_percent = new_percent
            completed_now = new_percent >= 100 and enrollment.completed_at is None
            if completed_now:
                enrollment.completed_at = timezone.now()
            enrollment.save(update_fields=['progress_percent', 'completed_at', 'updated_at'])
        return enrollment, completed_now

    @staticmethod
    def accumulate_score(enrollment_id, score: int, max_score: int) -> Enrollment:
        """Add one graded attempt to the running totals (repeat attempts add up)."""
        if EnrollmentRepository.add_score(enrollment_id, score, max_score) == 0:
            raise NotFound('Enrollment not found')
        return EnrollmentRepository.get(enrollment_id)

    @staticmethod
    def list_payments(status: str = '', page: int = 1, limit: int = 15):
        if status and status not in PaymentStatus.values:
            raise ValidationFailed(f'Unknown payment status {status}')
        return EnrollmentRepository.list_by_status(status=status, page=page, limit=limit)


def require_enrollment(user: CustomUser, course: Course) -> Enrollment:
    enrollment = EnrollmentRepository.get_for(user.id, course.id)
    if enrollment is None or enrollment.payment_status != PaymentStatus.COMPLETED:
        raise NotEnrolled()
    return enrollment


def require_lecture_access(user: CustomUser, lecture_id) -> Tuple[Lecture, Enrollment]:
    lecture = LectureRepository.get(lecture_id)
    if not lecture:
        raise NotFound('Lecture not found')
    enrollment = require_enrollment(user, lecture.section.course)
    if not is_section_accessible(lecture.section, enrollment):
        raise ContentLocked()
    return lecture, enrollment


class ProgressService:
    def __init__(self, certification=None):
        self.certification = certification

    @staticmethod
    def compute_percent(user: CustomUser, course: Course, enrollment: Enrollment) -> int:
        lecture_ids = accessible_lecture_ids(course, enrollment)
        if not lecture_ids:
            return 0
        done = ProgressRepository.completed_count(user, lecture_ids)
        return int((done / len(lecture_ids)) * 100)

    def complete_lecture(self, user: CustomUser, lecture_id) -> Dict[str, Any]:
        lecture, enrollment = require_lecture_access(user, lecture_id)
        ProgressRepository.mark_completed(user, lecture)
        course = CourseRepository.get_with_content(lecture.section.course_id)
        percent = self.compute_percent(user, course, enrollment)
        result = self.update_progress(enrollment, percent)
        result['lecture_id'] = str(lecture.id)
        return result

    def update_progress(self, enrollment: Enrollment, percent: int) -> Dict[str, Any]:
        enrollment, completed_now = EnrollmentLedger.record_progress(enrollment.id, percent)
        decision = None
        if enrollment.completed_at and self.certification is not None:
            decision = self.certification.evaluate(EnrollmentRepository.get(enrollment.id))
        return {
            'enrollment': enrollment,
            'completed_now': completed_now,
            'certificate': decision.certificate if decision else None,
        }


class ScoringEngine:
    def __init__(self, certification=None):
        self.certification = certification

    @staticmethod
    def grade_answers(correct: List[int], answers: List[Any]) -> Tuple[int, int]:
        # missing trailing answers count as wrong
        max_score = len(correct)
        score = sum(1 for i, key in enumerate(correct) if i < len(answers) and answers[i] == key)
        return score, max_score

    @staticmethod
    def grade_quiz(quiz, answers: List[Any]) -> Tuple[int, int]:
        return ScoringEngine.grade_answers([q.correct for q in quiz.questions.all()], answers)

    def submit_quiz(self, user: CustomUser, lecture_id, answers: List[int]) -> Dict[str, Any]:
        lecture, enrollment = require_lecture_access(user, lecture_id)
        quiz = QuizRepository.for_lecture(lecture)
        if quiz is None:
            raise NotFound('No quiz for lecture')

        score, max_score = self.grade_quiz(quiz, answers)
        with transaction.atomic():
            attempt = AttemptRepository.create(user, quiz, answers, score, max_score)
            enrollment = EnrollmentLedger.accumulate_score(enrollment.id, score, max_score)

        decision = None
        if enrollment.completed_at and self.certification is not None:
            decision = self.certification.evaluate(enrollment)
        return {
            'attempt_id': str(attempt.id),
            'score': score,
            'max_score': max_score,
            'total_score': enrollment.total_score,
            'max_possible_score': enrollment.max_possible_score,
            'certificate': decision.certificate if decision else None,
        }


class AssignmentService:
    @staticmethod
    def get_meta(user: CustomUser, lecture_id) -> Dict[str, Any]:
        lecture, _ = require_lecture_access(user, lecture_id)
        assignment = AssignmentRepository.for_lecture(lecture)
        if assignment is None:
            raise NotFound('No assignment')
        mine = SubmissionRepository.latest(user, lecture)
        return {
            'id': str(assignment.id),
            'title': assignment.title,
            'description': assignment.description,
            'due_date': assignment.due_date.isoformat() if assignment.due_date else None,
            'my_submission': {
                'id': str(mine.id),
                'content': mine.content,
                'grade': mine.grade,
                'feedback': mine.feedback,
                'submitted_at': mine.submitted_at.isoformat(),
            } if mine else None,
        }

    @staticmethod
    def submit(user: CustomUser, lecture_id, content: str, attachments: List[str]):
        lecture, _ = require_lecture_access(user, lecture_id)
        assignment = AssignmentRepository.for_lecture(lecture)
        if assignment is None:
            raise NotFound('No assignment')
        return SubmissionRepository.create(user, lecture, assignment, content, attachments)


class CourseService:
    @staticmethod
    def get_course(course_id: str):
        return CourseRepository.get(course_id)

    @staticmethod
    def create_course(data: Dict[str, Any]) -> Course:
        return CourseRepository.create(data)

    @staticmethod
    def create_section(course_id: str, data: Dict[str, Any]):
        course = CourseRepository.get(course_id)
        if not course:
            raise NotFound('Course not found')
        return SectionRepository.create(course, data)

    @staticmethod
    def player(user: CustomUser, course_id: str) -> Dict[str, Any]:
        course = CourseRepository.get_with_content(course_id)
        if not course:
            raise NotFound('Course not found')
        enrollment = require_enrollment(user, course)
        completed = {str(i) for i in ProgressRepository.completed_lecture_ids(user, course)}

        sections = []
        for section in course.sections.all():
            accessible = is_section_accessible(section, enrollment)
            lectures = []
            for lecture in section.lectures.all():
                item = {
                    'id': str(lecture.id),
                    'title': lecture.title,
                    'order': lecture.order,
                    'type': lecture.type,
                    'is_completed': str(lecture.id) in completed,
                }
                if accessible:
                    item['content'] = lecture.content
                lectures.append(item)
            sections.append({
                'id': str(section.id),
                'title': section.title,
                'order': section.order,
                'is_paid': section.is_paid,
                'price': section_price(section),
                'is_accessible': accessible,
                'lectures': lectures,
            })

        return {
            'course': {
                'id': str(course.id),
                'title': course.title,
                'description': course.description,
                'certificate_enabled': course.certificate_enabled,
                'pricing': price_breakdown(course),
            },
            'enrollment': {
                'id': str(enrollment.id),
                'progress_percent': enrollment.progress_percent,
                'total_score': enrollment.total_score,
                'max_possible_score': enrollment.max_possible_score,
                'completed_at': enrollment.completed_at.isoformat() if enrollment.completed_at else None,
            },
            'sections': sections,
        }


class LectureService:
    @staticmethod
    def provision(lecture: Lecture) -> None:
        """Create the quiz or assignment row a lecture of this type needs."""
        if lecture.type in Lecture.QUIZ_TYPES:
            QuizRepository.get_or_create_for_lecture(lecture)
        elif lecture.type == Lecture.Type.ASSIGNMENT:
            content = lecture.content or {}
            AssignmentRepository.upsert_for_lecture(
                lecture, content.get('description') or '', _due_date(content),
            )

    @staticmethod
    @transaction.atomic
    def create_lecture(section_id: str, data: Dict[str, Any]) -> Lecture:
        section = SectionRepository.get(section_id)
        if not section:
            raise NotFound('Section not found')
        lecture = LectureRepository.create(section, data)
        LectureService.provision(lecture)
        return lecture

    @staticmethod
    @transaction.atomic
    def update_lecture(lecture: Lecture, data: Dict[str, Any]) -> Lecture:
        lecture = LectureRepository.update(lecture, data)
        LectureService.provision(lecture)
        return lecture

    @staticmethod
    def save_quiz(lecture_id: str, title: Optional[str], questions: List[Dict[str, Any]]):
        lecture = LectureRepository.get(lecture_id)
        if not lecture:
            raise NotFound('Lecture not found')
        if lecture.type not in Lecture.QUIZ_TYPES:
            raise ValidationFailed('Lecture is not a quiz')
        quiz = QuizRepository.get_or_create_for_lecture(lecture)
        return QuizRepository.replace_questions(quiz, title, questions)


class DashboardService:
    @staticmethod
    def stats(user: CustomUser) -> Dict[str, Any]:
        enrollments = EnrollmentRepository.list_completed_for_user(user)
        total = len(enrollments)
        completed = len([e for e in enrollments if e.completed_at])
        average = sum(e.progress_percent for e in enrollments) / total if total > 0 else 0
        return {
            'total_enrollments': total,
            'completed_courses': completed,
            'in_progress_courses': total - completed,
            'total_certificates': CertificateRepository.count_for_user(user),
            'average_progress': average,
            'courses': [{
                'course_id': str(e.course.id),
                'title': e.course.title,
                'enrollment_id': str(e.id),
                'progress_percent': e.progress_percent,
                'completed_at': e.completed_at.isoformat() if e.completed_at else None,
            } for e in enrollments],
        }
