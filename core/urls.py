from django.urls import path

from . import views_documents, views_reports, views_review, views_submissions

app_name = "core"

urlpatterns = [
    # Submissions
    path("submissions/", views_submissions.SubmissionListView.as_view(), name="submission_list"),
    path("submissions/<uuid:submission_id>/", views_submissions.SubmissionDetailView.as_view(), name="submission_detail"),
    path("submissions/<uuid:submission_id>/submit/", views_submissions.SubmissionSubmitView.as_view(), name="submission_submit"),
    path("submissions/<uuid:submission_id>/files/", views_documents.SubmissionFilesView.as_view(), name="submission_files"),
    path("expense-types/", views_submissions.ExpenseTypeListView.as_view(), name="expense_types"),
    path("me/permissions/", views_submissions.MyPermissionsView.as_view(), name="my_permissions"),

    # Evidence files
    path("files/download/<str:token>/", views_documents.FileDownloadView.as_view(), name="file_download"),
    path("files/<uuid:file_id>/", views_documents.FileDetailView.as_view(), name="file_detail"),
    path("files/<uuid:file_id>/url/", views_documents.FileUrlView.as_view(), name="file_url"),
    path("files/<uuid:file_id>/analyze/", views_documents.FileAnalyzeView.as_view(), name="file_analyze"),

    # Review
    path("review/", views_review.ReviewQueueView.as_view(), name="review_queue"),
    path("review/comments/", views_review.ReviewCommentsView.as_view(), name="review_comments"),

    # Admin reports
    path("reports/stats/", views_reports.ReportStatsView.as_view(), name="report_stats"),
    path("reports/export/", views_reports.ReportExportView.as_view(), name="report_export"),
    path("organization/members/", views_reports.OrganizationMembersView.as_view(), name="organization_members"),
]
