from django.http import HttpResponse
from django.utils import timezone
from rest_framework.response import Response

from .permissions import Role
from .services import reports as report_services
from .views_base import TenantAPIView


class ReportStatsView(TenantAPIView):
    required_role = Role.ADMIN

    def get(self, request):
        return Response(report_services.dashboard(request.tenant))


class ReportExportView(TenantAPIView):
    required_role = Role.ADMIN

    def get(self, request):
        content = report_services.export_submissions_csv(request.tenant)
        response = HttpResponse(content, content_type="text/csv; charset=utf-8")
        filename = f"submissions-export-{timezone.now().date().isoformat()}.csv"
        response["Content-Disposition"] = f'attachment; filename="{filename}"'
        return response


class OrganizationMembersView(TenantAPIView):
    required_role = Role.ADMIN

    def get(self, request):
        return Response({"members": report_services.list_members(request.tenant)})
