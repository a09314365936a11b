from django.contrib import admin

from .models import Comment, DocumentAnalysisJob, EvidenceFile, Organization, OrganizationMembership, Submission, UserProfile


admin.site.site_header = "Kifndirou – System Admin"
admin.site.site_title = "Kifndirou System Admin"


def _superuser_only(request):
    return request.user.is_active and request.user.is_superuser


admin.site.has_permission = _superuser_only


class MembershipInline(admin.TabularInline):
    model = OrganizationMembership
    extra = 0
    fields = ("user", "provider_role", "is_active", "created_at")
    readonly_fields = ("created_at",)


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ("name", "subdomain", "created_at")
    search_fields = ("name", "subdomain")
    inlines = [MembershipInline]


@admin.register(UserProfile)
class UserProfileAdmin(admin.ModelAdmin):
    list_display = ("user",)
    search_fields = ("user__email",)


class EvidenceFileInline(admin.TabularInline):
    model = EvidenceFile
    extra = 0
    fields = ("original_filename", "kind", "mime_type", "size", "created_at")
    readonly_fields = fields
    can_delete = False


class CommentInline(admin.TabularInline):
    model = Comment
    extra = 0
    fields = ("author", "text", "decision", "created_at")
    readonly_fields = fields
    can_delete = False


@admin.register(Submission)
class SubmissionAdmin(admin.ModelAdmin):
    list_display = ("id", "organization", "expense_type", "title", "amount", "status", "created_at")
    list_filter = ("status", "organization")
    search_fields = ("title", "expense_type")
    # Status changes go through the review workflow only.
    readonly_fields = ("status", "created_by", "created_at", "updated_at")
    inlines = [EvidenceFileInline, CommentInline]


@admin.register(DocumentAnalysisJob)
class DocumentAnalysisJobAdmin(admin.ModelAdmin):
    list_display = ("id", "file", "status", "attempts", "method", "created_at", "finished_at")
    list_filter = ("status", "method")
    readonly_fields = ("file", "attempts", "last_error", "started_at", "finished_at")
