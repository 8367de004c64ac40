from django.contrib import admin
from django.contrib.auth.admin import UserAdmin
from .models import (
    Assignment,
    Certificate,
    Course,
    CustomUser,
    Enrollment,
    Lecture,
    Question,
    Quiz,
    Section,
    Submission,
)


class SectionInline(admin.TabularInline):
    model = Section
    extra = 0


class LectureInline(admin.TabularInline):
    model = Lecture
    extra = 0


class QuestionInline(admin.TabularInline):
    model = Question
    extra = 0


@admin.register(CustomUser)
class CustomUserAdmin(UserAdmin):
    list_display = ("username", "email", "role", "is_active")
    fieldsets = UserAdmin.fieldsets + (("Role", {"fields": ("role",)}),)


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ("title", "is_paid", "price", "is_active", "certificate_enabled", "created_at")
    inlines = [SectionInline]


@admin.register(Section)
class SectionAdmin(admin.ModelAdmin):
    list_display = ("title", "course", "order", "is_paid", "price")
    inlines = [LectureInline]


@admin.register(Quiz)
class QuizAdmin(admin.ModelAdmin):
    list_display = ("title", "lecture")
    inlines = [QuestionInline]


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ("user", "course", "payment_status", "payment_reference", "progress_percent", "updated_at")
    list_filter = ("payment_status",)
    search_fields = ("payment_reference",)


admin.site.register(Lecture)
admin.site.register(Assignment)
admin.site.register(Submission)
admin.site.register(Certificate)
