from typing import Tuple, List, Optional, Dict, Any
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F, Max, Q, QuerySet
from academy.exceptions import ValidationFailed
from academy.models import (
    Assignment,
    Certificate,
    Course,
    CustomUser,
    Enrollment,
    Lecture,
    LectureProgress,
    Question,
    Quiz,
    QuizAttempt,
    Section,
    Submission,
)


def _paginate(qs: QuerySet, page: int, limit: int) -> Tuple[List[Any], int]:
    total = qs.count()
    start = max((page - 1) * limit, 0)
    end = start + limit
    return list(qs[start:end]), total


def _first(qs: QuerySet, **lookup):
    # malformed ids (not a UUID) behave like a miss
    try:
        return qs.filter(**lookup).first()
    except (DjangoValidationError, ValueError, TypeError):
        return None


def _full_clean(instance) -> None:
    try:
        instance.full_clean()
    except DjangoValidationError as e:
        raise ValidationFailed('; '.join(e.messages))


class CourseRepository:
    @staticmethod
    def get(course_id: str) -> Optional[Course]:
        return _first(Course.objects.all(), id=course_id)

    @staticmethod
    def get_with_content(course_id: str) -> Optional[Course]:
        return _first(Course.objects.prefetch_related('sections__lectures'), id=course_id)

    @staticmethod
    def get_active_with_content(course_id: str) -> Optional[Course]:
        return _first(Course.objects.prefetch_related('sections__lectures'), id=course_id, is_active=True)

    @staticmethod
    def create(data: Dict[str, Any]) -> Course:
        course = Course(**data)
        _full_clean(course)
        course.save()
        return course


class SectionRepository:
    @staticmethod
    def get(section_id: str) -> Optional[Section]:
        return _first(Section.objects.select_related('course'), id=section_id)

    @staticmethod
    def next_order(course: Course) -> int:
        last = Section.objects.filter(course=course).aggregate(m=Max('order'))['m']
        return (last or 0) + 1

    @staticmethod
    def create(course: Course, data: Dict[str, Any]) -> Section:
        data = dict(data)
        if data.get('order') is None:
            data['order'] = SectionRepository.next_order(course)
        section = Section(course=course, **data)
        _full_clean(section)
        section.save()
        return section

    @staticmethod
    def paid_section_ids(course_id) -> List[str]:
        return [str(sid) for sid in Section.objects.filter(course_id=course_id, is_paid=True).values_list('id', flat=True)]


class LectureRepository:
    @staticmethod
    def get(lecture_id: str) -> Optional[Lecture]:
        return _first(Lecture.objects.select_related('section__course'), id=lecture_id)

    @staticmethod
    def create(section: Section, data: Dict[str, Any]) -> Lecture:
        last = Lecture.objects.filter(section=section).aggregate(m=Max('order'))['m']
        return Lecture.objects.create(section=section, order=(last or 0) + 1, **data)

    @staticmethod
    def update(lecture: Lecture, data: Dict[str, Any]) -> Lecture:
        for k, v in data.items():
            setattr(lecture, k, v)
        lecture.save()
        return lecture


class QuizRepository:
    @staticmethod
    def for_lecture(lecture: Lecture) -> Optional[Quiz]:
        return Quiz.objects.filter(lecture=lecture).prefetch_related('questions').first()

    @staticmethod
    def get_or_create_for_lecture(lecture: Lecture) -> Quiz:
        quiz, _ = Quiz.objects.get_or_create(lecture=lecture, defaults={'title': lecture.title})
        return quiz

    @staticmethod
    @transaction.atomic
    def replace_questions(quiz: Quiz, title: Optional[str], questions: List[Dict[str, Any]]) -> Quiz:
        if title:
            quiz.title = title
            quiz.save(update_fields=['title'])
        Question.objects.filter(quiz=quiz).delete()
        Question.objects.bulk_create([
            Question(quiz=quiz, question=q['question'], options=q['options'], correct=q['correct'], order=q['order'])
            for q in sorted(questions, key=lambda q: q['order'])
        ])
        return quiz


class AssignmentRepository:
    @staticmethod
    def for_lecture(lecture: Lecture) -> Optional[Assignment]:
        return Assignment.objects.filter(lecture=lecture).first()

    @staticmethod
    def upsert_for_lecture(lecture: Lecture, description: str, due_date) -> Assignment:
        assignment, _ = Assignment.objects.update_or_create(
            lecture=lecture,
            defaults={'title': lecture.title, 'description': description, 'due_date': due_date},
        )
        return assignment


class UserRepository:
    @staticmethod
    def get_by_id(user_id) -> Optional[CustomUser]:
        return _first(CustomUser.objects.all(), id=user_id)

    @staticmethod
    def get_by_username_or_email(username_or_email: str) -> Optional[CustomUser]:
        return CustomUser.objects.filter(Q(username=username_or_email) | Q(email=username_or_email)).first()


class EnrollmentRepository:
    @staticmethod
    def get(enrollment_id) -> Optional[Enrollment]:
        return _first(Enrollment.objects.select_related('course', 'user'), id=enrollment_id)

    @staticmethod
    def get_for(user_id, course_id) -> Optional[Enrollment]:
        return _first(Enrollment.objects.select_related('course', 'user'), user_id=user_id, course_id=course_id)

    @staticmethod
    def lock(enrollment_id) -> Optional[Enrollment]:
        return _first(Enrollment.objects.select_for_update(), id=enrollment_id)

    @staticmethod
    def lock_for(user_id, course_id) -> Optional[Enrollment]:
        return _first(Enrollment.objects.select_for_update(), user_id=user_id, course_id=course_id)

    @staticmethod
    def lock_by_reference(reference: str) -> Optional[Enrollment]:
        return _first(Enrollment.objects.select_for_update(), payment_reference=reference)

    @staticmethod
    def lock_pending_for(user_id, course_id) -> Optional[Enrollment]:
        return _first(
            Enrollment.objects.select_for_update(),
            user_id=user_id, course_id=course_id, payment_status=Enrollment.PaymentStatus.PENDING,
        )

    @staticmethod
    def create(user: CustomUser, course: Course, **fields) -> Enrollment:
        return Enrollment.objects.create(user=user, course=course, **fields)

    @staticmethod
    def transition_pending(enrollment_id, **fields) -> int:
        """Compare-and-swap on ``payment_status = PENDING``; returns rows affected."""
        return Enrollment.objects.filter(
            id=enrollment_id, payment_status=Enrollment.PaymentStatus.PENDING,
        ).update(**fields)

    @staticmethod
    def add_score(enrollment_id, score: int, max_score: int) -> int:
        return Enrollment.objects.filter(id=enrollment_id).update(
            total_score=F('total_score') + score,
            max_possible_score=F('max_possible_score') + max_score,
        )

    @staticmethod
    def list_completed_for_user(user: CustomUser) -> List[Enrollment]:
        return list(
            Enrollment.objects.filter(user=user, payment_status=Enrollment.PaymentStatus.COMPLETED)
            .select_related('course').order_by('-enrolled_at')
        )

    @staticmethod
    def list_by_status(status: str = '', page: int = 1, limit: int = 15) -> Tuple[List[Enrollment], int]:
        qs = Enrollment.objects.select_related('course', 'user')
        if status:
            qs = qs.filter(payment_status=status)
        qs = qs.order_by('-updated_at')
        return _paginate(qs, page, limit)


class ProgressRepository:
    @staticmethod
    def mark_completed(user: CustomUser, lecture: Lecture) -> LectureProgress:
        progress, _ = LectureProgress.objects.get_or_create(user=user, lecture=lecture)
        return progress

    @staticmethod
    def completed_count(user: CustomUser, lecture_ids: List[Any]) -> int:
        return LectureProgress.objects.filter(user=user, lecture_id__in=lecture_ids).count()

    @staticmethod
    def completed_lecture_ids(user: CustomUser, course: Course) -> set:
        return set(LectureProgress.objects.filter(
            user=user, lecture__section__course=course,
        ).values_list('lecture_id', flat=True))


class AttemptRepository:
    @staticmethod
    def create(user: CustomUser, quiz: Quiz, answers: List[int], score: int, max_score: int) -> QuizAttempt:
        return QuizAttempt.objects.create(user=user, quiz=quiz, answers=answers, score=score, max_score=max_score)


class SubmissionRepository:
    @staticmethod
    def create(user: CustomUser, lecture: Lecture, assignment: Assignment, content: str,
               attachments: List[str]) -> Submission:
        return Submission.objects.create(
            user=user, lecture=lecture, assignment=assignment, content=content, attachments=attachments,
        )

    @staticmethod
    def latest(user: CustomUser, lecture: Lecture) -> Optional[Submission]:
        return Submission.objects.filter(user=user, lecture=lecture).order_by('-submitted_at').first()


class CertificateRepository:
    @staticmethod
    def get_for(user_id, course_id) -> Optional[Certificate]:
        return Certificate.objects.filter(user_id=user_id, course_id=course_id).first()

    @staticmethod
    def create(user_id, course_id, image_url: str, certificate_id=None) -> Certificate:
        fields = {'id': certificate_id} if certificate_id else {}
        return Certificate.objects.create(user_id=user_id, course_id=course_id, image_url=image_url, **fields)

    @staticmethod
    def count_for_user(user: CustomUser) -> int:
        return Certificate.objects.filter(user=user).count()

    @staticmethod
    def list_user_certificates(user: CustomUser, page: int = 1, limit: int = 15) -> Tuple[List[Certificate], int]:
        qs = Certificate.objects.filter(user=user).select_related('course').order_by('-issued_at')
        return _paginate(qs, page, limit)
