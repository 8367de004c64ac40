from typing import Dict, Any, List

from academy.exceptions import ValidationFailed
from academy.models import Lecture


def _int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationFailed(f'{field} must be an integer')
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationFailed(f'{field} must be an integer')
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f'{field} must be an integer')


def _price(payload: Dict[str, Any], is_paid: bool):
    if not is_paid:
        return None
    price = payload.get('price')
    if price is None:
        raise ValidationFailed('Paid items need a price')
    price = _int(price, 'price')
    if price < 0:
        raise ValidationFailed('Price must not be negative')
    return price


class EntityFactory:
    @staticmethod
    def build_checkout_request(payload: Dict[str, Any]) -> Dict[str, Any]:
        course_id = payload.get('course_id') or payload.get('courseId')
        if not course_id:
            raise ValidationFailed('course_id is required')
        if payload.get('amount') is None:
            raise ValidationFailed('amount is required')
        include_all = payload.get('include_all_sections', payload.get('includeAllSections', False))
        return {
            'course_id': str(course_id),
            'amount': _int(payload['amount'], 'amount'),
            'include_all_sections': include_all is True,
        }

    @staticmethod
    def build_section_checkout_request(payload: Dict[str, Any]) -> Dict[str, Any]:
        section_id = payload.get('section_id') or payload.get('sectionId')
        course_id = payload.get('course_id') or payload.get('courseId')
        if not section_id or not course_id:
            raise ValidationFailed('section_id and course_id are required')
        if payload.get('amount') is None:
            raise ValidationFailed('amount is required')
        return {
            'section_id': str(section_id),
            'course_id': str(course_id),
            'amount': _int(payload['amount'], 'amount'),
        }

    @staticmethod
    def build_reference(payload: Dict[str, Any]) -> str:
        reference = payload.get('reference')
        if not reference or not isinstance(reference, str):
            raise ValidationFailed('reference is required')
        return reference.strip()

    @staticmethod
    def build_course_create(payload: Dict[str, Any]) -> Dict[str, Any]:
        if not payload.get('title'):
            raise ValidationFailed("Course title is required")
        is_paid = bool(payload.get('is_paid', False))
        data = {
            'title': str(payload.get('title')).strip(),
            'description': str(payload.get('description', '')).strip(),
            'is_paid': is_paid,
            'price': _price(payload, is_paid),
            'is_active': bool(payload.get('is_active', True)),
            'certificate_enabled': bool(payload.get('certificate_enabled', False)),
            'certificate_require_completion': bool(payload.get('certificate_require_completion', True)),
            'certificate_require_min_score': bool(payload.get('certificate_require_min_score', False)),
        }
        if payload.get('certificate_min_score') is not None:
            try:
                min_score = float(payload['certificate_min_score'])
            except (TypeError, ValueError):
                raise ValidationFailed('certificate_min_score must be a number')
            if not 0 <= min_score <= 100:
                raise ValidationFailed('certificate_min_score must be between 0 and 100')
            data['certificate_min_score'] = min_score
        return data

    @staticmethod
    def build_section_create(payload: Dict[str, Any]) -> Dict[str, Any]:
        if not payload.get('title'):
            raise ValidationFailed("Section title is required")
        is_paid = bool(payload.get('is_paid', False))
        return {
            'title': str(payload.get('title')).strip(),
            'description': str(payload.get('description', '')).strip(),
            'order': _int(payload['order'], 'order') if payload.get('order') is not None else None,
            'is_paid': is_paid,
            'price': _price(payload, is_paid),
        }

    @staticmethod
    def build_lecture(payload: Dict[str, Any], existing: Lecture = None) -> Dict[str, Any]:
        if existing is None and not payload.get('title'):
            raise ValidationFailed("Lecture title is required")
        data = {}
        if 'title' in payload:
            data['title'] = str(payload['title']).strip()
        if 'type' in payload or existing is None:
            lecture_type = payload.get('type', Lecture.Type.VIDEO)
            if lecture_type not in Lecture.Type.values:
                raise ValidationFailed(f'Unknown lecture type {lecture_type}')
            data['type'] = lecture_type
        if 'content' in payload or existing is None:
            content = payload.get('content') or {}
            if not isinstance(content, dict):
                raise ValidationFailed('Lecture content must be an object')
            data['content'] = content
        return data

    @staticmethod
    def build_quiz_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
        questions = payload.get('questions')
        if not isinstance(questions, list) or not questions:
            raise ValidationFailed('At least one question is required')
        built = []
        for index, q in enumerate(questions):
            if not isinstance(q, dict) or not q.get('question'):
                raise ValidationFailed(f'Question {index + 1} needs text')
            options = q.get('options')
            if not isinstance(options, list) or len(options) < 2:
                raise ValidationFailed(f'Question {index + 1} needs at least two options')
            correct = _int(q.get('correct'), 'correct')
            if not 0 <= correct < len(options):
                raise ValidationFailed(f'Question {index + 1} has no such option {correct}')
            built.append({
                'question': str(q['question']),
                'options': [str(o) for o in options],
                'correct': correct,
                'order': _int(q.get('order', index + 1), 'order'),
            })
        return {'title': payload.get('title'), 'questions': built}

    @staticmethod
    def parse_answers(payload: Dict[str, Any]) -> List[int]:
        answers = payload.get('answers')
        if not isinstance(answers, list):
            raise ValidationFailed('answers must be a list')
        return [_int(a, 'answer') for a in answers]

    @staticmethod
    def build_progress(payload: Dict[str, Any]) -> int:
        value = payload.get('progress_percent', payload.get('progressPercent'))
        if value is None or isinstance(value, bool) or not isinstance(value, int):
            raise ValidationFailed('progress_percent must be an integer between 0 and 100')
        if not 0 <= value <= 100:
            raise ValidationFailed('progress_percent must be an integer between 0 and 100')
        return value

    @staticmethod
    def build_submission(payload: Dict[str, Any]) -> Dict[str, Any]:
        content = payload.get('content')
        if not content or not str(content).strip():
            raise ValidationFailed('Submission content is required')
        attachments = payload.get('attachments') or []
        if not isinstance(attachments, list):
            raise ValidationFailed('attachments must be a list')
        return {'content': str(content), 'attachments': [str(a) for a in attachments]}
