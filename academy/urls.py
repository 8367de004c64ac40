from django.urls import path
from academy.views import (
    api_login,
    payment_initialize, payment_section_initialize,
    payment_verify, payment_section_verify,
    payment_webhook,
    api_enroll, api_course_player,
    api_lecture_complete, api_course_progress,
    api_quiz_submit, api_lecture_assignment,
    api_dashboard, api_my_certificates,
    admin_courses, admin_course_sections,
    admin_section_lectures, admin_lecture_detail,
    admin_lecture_quiz, admin_issue_certificate,
    admin_payments,
)

app_name = 'academy'

urlpatterns = [
    path('api/auth/login', api_login, name='api_login'),
    path('payment/initialize', payment_initialize, name='payment_initialize'),
    path('payment/section/initialize', payment_section_initialize, name='payment_section_initialize'),
    path('payment/verify', payment_verify, name='payment_verify'),
    path('payment/section/verify', payment_section_verify, name='payment_section_verify'),
    path('payment/webhook', payment_webhook, name='payment_webhook'),
    path('api/courses/<str:course_id>/enroll', api_enroll, name='api_enroll'),
    path('api/courses/<str:course_id>/player', api_course_player, name='api_course_player'),
    path('api/courses/<str:course_id>/progress', api_course_progress, name='api_course_progress'),
    path('api/lectures/<str:lecture_id>/complete', api_lecture_complete, name='api_lecture_complete'),
    path('api/lectures/<str:lecture_id>/quiz/submit', api_quiz_submit, name='api_quiz_submit'),
    path('api/lectures/<str:lecture_id>/assignment', api_lecture_assignment, name='api_lecture_assignment'),
    path('api/dashboard', api_dashboard, name='api_dashboard'),
    path('api/certificates', api_my_certificates, name='api_my_certificates'),
    path('api/admin/courses', admin_courses, name='admin_courses'),
    path('api/admin/courses/<str:course_id>/sections', admin_course_sections, name='admin_course_sections'),
    path('api/admin/sections/<str:section_id>/lectures', admin_section_lectures, name='admin_section_lectures'),
    path('api/admin/lectures/<str:lecture_id>', admin_lecture_detail, name='admin_lecture_detail'),
    path('api/admin/lectures/<str:lecture_id>/quiz', admin_lecture_quiz, name='admin_lecture_quiz'),
    path('api/admin/certificates', admin_issue_certificate, name='admin_issue_certificate'),
    path('api/admin/payments', admin_payments, name='admin_payments'),
]
