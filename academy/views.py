import json
import logging

from django.conf import settings
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt

from academy.auth import authenticate, get_user_from_token, issue_token
from academy.certificates import CertificationEngine
from academy.checkout import CheckoutService
from academy.exceptions import LedgerError, NotEnrolled, NotFound, ValidationFailed
from academy.factories import EntityFactory
from academy.payments import SIGNATURE_HEADER, build_gateway
from academy.reconciliation import ReconciliationService
from academy.repositories import (
    CertificateRepository,
    EnrollmentRepository,
    LectureRepository,
    UserRepository,
)
from academy.services import (
    AssignmentService,
    CourseService,
    DashboardService,
    EnrollmentLedger,
    LectureService,
    ProgressService,
    ScoringEngine,
    require_enrollment,
)
from academy.storage import build_object_store

logger = logging.getLogger(__name__)


def _unauthorized():
    return JsonResponse({'status': 'error', 'message': 'Unauthorized', 'data': None}, status=401)


def _forbidden():
    return JsonResponse({'status': 'error', 'message': 'Admin only', 'data': None}, status=403)


def _method_not_allowed():
    return JsonResponse({'status': 'error', 'message': 'Method not allowed', 'data': None}, status=405)


def _server_error():
    return JsonResponse({'status': 'error', 'message': 'Internal server error', 'data': None}, status=500)


def _error_response(exc: LedgerError):
    return JsonResponse({'status': 'error', 'message': exc.message, 'data': None}, status=exc.status_code)


def _success(data, message='', status=200, **extra):
    return JsonResponse({'status': 'success', 'message': message, 'data': data, **extra}, status=status)


def _json_body(request):
    try:
        body = json.loads(request.body or b'{}')
    except ValueError:
        raise ValidationFailed('Malformed JSON body')
    if not isinstance(body, dict):
        raise ValidationFailed('JSON body must be an object')
    return body


def _page_params(request):
    try:
        page = max(int(request.GET.get('page', 1)), 1)
        limit = min(max(int(request.GET.get('limit', 15)), 1), 50)
    except ValueError:
        raise ValidationFailed('page and limit must be integers')
    return page, limit


def _pagination(page, limit, total_items):
    return {'current_page': page, 'total_pages': (total_items + limit - 1) // limit, 'total_items': total_items}


def _certification():
    return CertificationEngine(build_object_store(), settings.CERTIFICATE_PLATFORM_NAME)


def _reconciliation():
    return ReconciliationService(build_gateway(), settings.PAYSTACK_SECRET_KEY)


def _certificate_data(certificate):
    if certificate is None:
        return None
    return {
        'id': str(certificate.id),
        'course_id': str(certificate.course_id),
        'user_id': str(certificate.user_id),
        'image_url': certificate.image_url,
        'issued_at': certificate.issued_at.isoformat(),
    }


def _enrollment_data(enrollment):
    return {
        'id': str(enrollment.id),
        'course_id': str(enrollment.course_id),
        'user_id': str(enrollment.user_id),
        'payment_status': enrollment.payment_status,
        'payment_reference': enrollment.payment_reference,
        'paid_sections': enrollment.paid_sections,
        'progress_percent': enrollment.progress_percent,
        'total_score': enrollment.total_score,
        'max_possible_score': enrollment.max_possible_score,
        'enrolled_at': enrollment.enrolled_at.isoformat(),
        'completed_at': enrollment.completed_at.isoformat() if enrollment.completed_at else None,
    }


def _payment_result(result):
    return {
        'success': result.success,
        'status': result.status.value,
        'course_id': result.course_id,
        'enrollment_id': str(result.enrollment.id) if result.enrollment else None,
    }


@csrf_exempt
def api_login(request):
    if request.method != 'POST':
        return _method_not_allowed()
    try:
        body = _json_body(request)
        identifier = body.get('identifier')
        password = body.get('password')
        if not identifier or not password:
            return JsonResponse({'status': 'error', 'message': 'Missing credentials', 'data': None}, status=400)

        user = authenticate(identifier, password)
        if user is None:
            return JsonResponse({'status': 'error', 'message': 'Invalid username/email or password', 'data': None}, status=401)

        return _success({'username': user.username, 'role': user.role, 'token': issue_token(user)}, 'Login successful')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


# Payments

@csrf_exempt
def payment_initialize(request):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        data = EntityFactory.build_checkout_request(_json_body(request))
        checkout = CheckoutService(build_gateway(), settings.PAYMENT_CALLBACK_URL)
        result = checkout.initialize_course(user, data['course_id'], data['amount'], data['include_all_sections'])
        return _success(result, 'Payment initialized')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def payment_section_initialize(request):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        data = EntityFactory.build_section_checkout_request(_json_body(request))
        checkout = CheckoutService(build_gateway(), settings.PAYMENT_CALLBACK_URL)
        result = checkout.initialize_section(user, data['section_id'], data['course_id'], data['amount'])
        return _success(result, 'Payment initialized')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def payment_verify(request):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        reference = EntityFactory.build_reference(_json_body(request))
        result = _reconciliation().verify_course_payment(reference, user)
        return _success(_payment_result(result), 'Payment verified' if result.success else 'Payment not completed')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def payment_section_verify(request):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        reference = EntityFactory.build_reference(_json_body(request))
        result = _reconciliation().verify_section_payment(reference, user)
        return _success(_payment_result(result), 'Payment verified' if result.success else 'Payment not completed')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def payment_webhook(request):
    if request.method != 'POST':
        return _method_not_allowed()

    signature = request.headers.get(SIGNATURE_HEADER)
    try:
        result = _reconciliation().handle_webhook(request.body, signature)
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()
    # acknowledged even when nothing was applied so the gateway stops redelivering
    return _success({'received': True, 'status': result.status.value})


# Learner

@csrf_exempt
def api_enroll(request, course_id):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        course = CourseService.get_course(course_id)
        if not course or not course.is_active:
            raise NotFound('Course not found')
        enrollment = EnrollmentLedger.enroll_free(user, course)
        return _success(_enrollment_data(enrollment), 'Enrolled', status=201)
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def api_course_player(request, course_id):
    if request.method != 'GET':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        return _success(CourseService.player(user, course_id))
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def api_lecture_complete(request, lecture_id):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        result = ProgressService(_certification()).complete_lecture(user, lecture_id)
        enrollment = result['enrollment']
        return _success({
            'lecture_id': result['lecture_id'],
            'is_completed': True,
            'course_progress': enrollment.progress_percent,
            'course_completed': enrollment.completed_at is not None,
            'certificate': _certificate_data(result['certificate']),
        }, 'Lecture completed')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def api_course_progress(request, course_id):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        percent = EntityFactory.build_progress(_json_body(request))
        course = CourseService.get_course(course_id)
        if not course:
            raise NotFound('Course not found')
        enrollment = require_enrollment(user, course)
        result = ProgressService(_certification()).update_progress(enrollment, percent)
        return _success({
            'enrollment': _enrollment_data(result['enrollment']),
            'completed_now': result['completed_now'],
            'certificate': _certificate_data(result['certificate']),
        }, 'Progress updated')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def api_quiz_submit(request, lecture_id):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        answers = EntityFactory.parse_answers(_json_body(request))
        result = ScoringEngine(_certification()).submit_quiz(user, lecture_id, answers)
        result['certificate'] = _certificate_data(result['certificate'])
        return _success(result, 'Quiz submitted')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def api_lecture_assignment(request, lecture_id):
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        if request.method == 'GET':
            return _success(AssignmentService.get_meta(user, lecture_id))

        elif request.method == 'POST':
            data = EntityFactory.build_submission(_json_body(request))
            submission = AssignmentService.submit(user, lecture_id, data['content'], data['attachments'])
            return _success({
                'id': str(submission.id),
                'content': submission.content,
                'attachments': submission.attachments,
                'submitted_at': submission.submitted_at.isoformat(),
            }, 'Assignment submitted', status=201)

        else:
            return _method_not_allowed()
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def api_dashboard(request):
    if request.method != 'GET':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        return _success(DashboardService.stats(user))
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def api_my_certificates(request):
    if request.method != 'GET':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user:
        return _unauthorized()

    try:
        page, limit = _page_params(request)
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()
    certificates, total_items = CertificateRepository.list_user_certificates(user, page=page, limit=limit)
    data = []
    for c in certificates:
        item = _certificate_data(c)
        item['course_title'] = c.course.title
        data.append(item)
    return _success(data, pagination=_pagination(page, limit, total_items))


# Admin

@csrf_exempt
def admin_courses(request):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user or not user.is_administrator:
        return _forbidden()

    try:
        data = EntityFactory.build_course_create(_json_body(request))
        course = CourseService.create_course(data)
        return _success({
            'id': str(course.id),
            'title': course.title,
            'description': course.description,
            'is_paid': course.is_paid,
            'price': course.price,
            'is_active': course.is_active,
            'certificate_enabled': course.certificate_enabled,
            'certificate_require_completion': course.certificate_require_completion,
            'certificate_require_min_score': course.certificate_require_min_score,
            'certificate_min_score': course.certificate_min_score,
            'created_at': course.created_at.isoformat(),
        }, 'Course created', status=201)
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def admin_course_sections(request, course_id):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user or not user.is_administrator:
        return _forbidden()

    try:
        data = EntityFactory.build_section_create(_json_body(request))
        section = CourseService.create_section(course_id, data)
        return _success({
            'id': str(section.id),
            'course_id': str(section.course_id),
            'title': section.title,
            'order': section.order,
            'is_paid': section.is_paid,
            'price': section.price,
        }, 'Section created', status=201)
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


def _lecture_data(lecture):
    return {
        'id': str(lecture.id),
        'section_id': str(lecture.section_id),
        'title': lecture.title,
        'order': lecture.order,
        'type': lecture.type,
        'content': lecture.content,
    }


@csrf_exempt
def admin_section_lectures(request, section_id):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user or not user.is_administrator:
        return _forbidden()

    try:
        data = EntityFactory.build_lecture(_json_body(request))
        lecture = LectureService.create_lecture(section_id, data)
        return _success(_lecture_data(lecture), 'Lecture created', status=201)
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def admin_lecture_detail(request, lecture_id):
    if request.method != 'PUT':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user or not user.is_administrator:
        return _forbidden()

    try:
        lecture = LectureRepository.get(lecture_id)
        if not lecture:
            raise NotFound('Lecture not found')
        data = EntityFactory.build_lecture(_json_body(request), existing=lecture)
        lecture = LectureService.update_lecture(lecture, data)
        return _success(_lecture_data(lecture), 'Lecture updated')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def admin_lecture_quiz(request, lecture_id):
    if request.method != 'PUT':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user or not user.is_administrator:
        return _forbidden()

    try:
        data = EntityFactory.build_quiz_payload(_json_body(request))
        quiz = LectureService.save_quiz(lecture_id, data['title'], data['questions'])
        return _success({
            'id': str(quiz.id),
            'title': quiz.title,
            'questions': [
                {'question': q.question, 'options': q.options, 'correct': q.correct, 'order': q.order}
                for q in quiz.questions.all()
            ],
        }, 'Quiz saved')
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def admin_issue_certificate(request):
    if request.method != 'POST':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user or not user.is_administrator:
        return _forbidden()

    try:
        body = _json_body(request)
        student = UserRepository.get_by_id(body.get('user_id'))
        course = CourseService.get_course(body.get('course_id'))
        if not student or not course:
            raise NotFound('User or course not found')
        enrollment = EnrollmentRepository.get_for(student.id, course.id)
        if enrollment is None or not enrollment.is_paid_up:
            raise NotEnrolled('User is not enrolled in this course')

        decision = _certification().evaluate(enrollment)
        if decision.certificate is None:
            return JsonResponse({'status': 'error', 'message': decision.reason, 'data': None}, status=400)
        return _success(_certificate_data(decision.certificate), decision.reason,
                        status=201 if decision.issued else 200)
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()


@csrf_exempt
def admin_payments(request):
    if request.method != 'GET':
        return _method_not_allowed()
    user = get_user_from_token(request)
    if not user or not user.is_administrator:
        return _forbidden()

    try:
        page, limit = _page_params(request)
        enrollments, total_items = EnrollmentLedger.list_payments(
            status=request.GET.get('status', ''), page=page, limit=limit,
        )
    except LedgerError as e:
        return _error_response(e)
    except Exception:
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return _server_error()

    data = []
    for e in enrollments:
        item = _enrollment_data(e)
        item['course_title'] = e.course.title
        item['username'] = e.user.username
        data.append(item)
    return _success(data, pagination=_pagination(page, limit, total_items))
