"""
Shared fixtures for the academy test suite.

The payment gateway and the object store are replaced by in-process fakes
through the same factory functions the views use, so no test reaches the
network or the filesystem.
"""

import json

import pytest
from django.test import Client

from academy.auth import issue_token
from academy.exceptions import GatewayUnavailable, ObjectStoreUnavailable
from academy.models import Course, CustomUser, Enrollment, Lecture, Question, Quiz, Section
from academy.payments import compute_webhook_signature
from academy.schemas import InitializedTransaction, VerifiedTransaction

WEBHOOK_SECRET = "sk_test_webhook_secret"
PASSWORD = "correct-horse-battery"


class FakeGateway:
    """Records initialized transactions and answers verify from them."""

    def __init__(self):
        self.transactions = {}
        self.verify_calls = []
        self.unavailable = False
        self._counter = 0

    def generate_reference(self):
        self._counter += 1
        return f"lms_test_{self._counter}"

    def initialize(self, amount, email, reference, callback_url, metadata):
        if self.unavailable:
            raise GatewayUnavailable()
        self.transactions[reference] = {
            "amount": amount,
            "email": email,
            "callback_url": callback_url,
            "metadata": metadata,
            "status": "ongoing",
        }
        return InitializedTransaction(
            authorization_url=f"https://checkout.test/{reference}",
            reference=reference,
            access_code="ac_test",
        )

    def settle(self, reference, status="success"):
        self.transactions[reference]["status"] = status

    def verify(self, reference):
        self.verify_calls.append(reference)
        if self.unavailable or reference not in self.transactions:
            raise GatewayUnavailable()
        tx = self.transactions[reference]
        return VerifiedTransaction(
            reference=reference, status=tx["status"], amount=tx["amount"], metadata=tx["metadata"],
        )


class InMemoryObjectStore:
    def __init__(self):
        self.objects = {}
        self.unavailable = False

    def put(self, data, content_type):
        if self.unavailable:
            raise ObjectStoreUnavailable()
        url = f"memory://certificates/{len(self.objects) + 1}.pdf"
        self.objects[url] = (data, content_type)
        return url


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture(autouse=True)
def external_services(monkeypatch, settings, gateway, object_store):
    settings.PAYSTACK_SECRET_KEY = WEBHOOK_SECRET
    settings.PAYMENT_CALLBACK_URL = "http://localhost:3000/payment/callback"
    monkeypatch.setattr("academy.views.build_gateway", lambda: gateway)
    monkeypatch.setattr("academy.views.build_object_store", lambda: object_store)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role=CustomUser.Role.STUDENT, **fields):
        counter["n"] += 1
        n = counter["n"]
        fields.setdefault("username", f"user{n}")
        fields.setdefault("email", f"user{n}@example.com")
        fields.setdefault("first_name", "Ada")
        fields.setdefault("last_name", f"Learner{n}")
        return CustomUser.objects.create_user(password=PASSWORD, role=role, **fields)

    return _make


@pytest.fixture
def student(make_user):
    return make_user()


@pytest.fixture
def other_student(make_user):
    return make_user()


@pytest.fixture
def admin_user(make_user):
    return make_user(role=CustomUser.Role.ADMIN)


@pytest.fixture
def make_course(db):
    def _make(**fields):
        fields.setdefault("title", "Intro to Accounting")
        return Course.objects.create(**fields)

    return _make


@pytest.fixture
def make_section(db):
    def _make(course, order, is_paid=False, price=None, title=None):
        return Section.objects.create(
            course=course, order=order, is_paid=is_paid, price=price, title=title or f"Section {order}",
        )

    return _make


@pytest.fixture
def make_lecture(db):
    def _make(section, order=1, type=Lecture.Type.VIDEO, content=None):
        return Lecture.objects.create(
            section=section, order=order, type=type, title=f"Lecture {section.order}.{order}", content=content or {},
        )

    return _make


@pytest.fixture
def make_quiz(db, make_lecture):
    def _make(section, correct, order=1):
        lecture = make_lecture(section, order=order, type=Lecture.Type.QUIZ)
        quiz = Quiz.objects.create(lecture=lecture, title=lecture.title)
        for i, key in enumerate(correct):
            Question.objects.create(quiz=quiz, question=f"Q{i + 1}", options=["a", "b", "c", "d"], correct=key, order=i + 1)
        return lecture

    return _make


@pytest.fixture
def enroll(db):
    def _enroll(user, course, status=Enrollment.PaymentStatus.COMPLETED, **fields):
        return Enrollment.objects.create(user=user, course=course, payment_status=status, **fields)

    return _enroll


@pytest.fixture
def paid_course(make_course, make_section, make_lecture):
    """Course priced 5000 with a free section and one premium section priced 2000."""
    course = make_course(is_paid=True, price=5000)
    free = make_section(course, 1)
    premium = make_section(course, 2, is_paid=True, price=2000)
    make_lecture(free, 1)
    make_lecture(premium, 1)
    return course


@pytest.fixture
def free_course(make_course, make_section, make_lecture):
    course = make_course(title="Free Bookkeeping")
    section = make_section(course, 1)
    make_lecture(section, 1)
    make_lecture(section, 2)
    return course


class ApiClient:
    def __init__(self, user=None):
        self.client = Client()
        self.headers = {"HTTP_AUTHORIZATION": f"Bearer {issue_token(user)}"} if user else {}

    def get(self, path, **params):
        return self.client.get(path, params, **self.headers)

    def post(self, path, body=None):
        return self.client.post(path, data=json.dumps(body or {}), content_type="application/json", **self.headers)

    def put(self, path, body=None):
        return self.client.put(path, data=json.dumps(body or {}), content_type="application/json", **self.headers)


@pytest.fixture
def api():
    return ApiClient


def webhook_payload(event, reference, status, metadata):
    return json.dumps({
        "event": event,
        "data": {"reference": reference, "status": status, "amount": 0, "metadata": metadata},
    }).encode("utf-8")


@pytest.fixture
def send_webhook(db):
    def _send(event, reference, status, metadata, secret=WEBHOOK_SECRET, signature=None):
        body = webhook_payload(event, reference, status, metadata)
        sig = signature if signature is not None else compute_webhook_signature(body, secret)
        return Client().post("/payment/webhook", data=body, content_type="application/json",
                             HTTP_X_PAYSTACK_SIGNATURE=sig)

    return _send
