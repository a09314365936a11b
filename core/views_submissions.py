from rest_framework import status
from rest_framework.response import Response

from .expense_types import list_expense_types
from .permissions import permissions_for
from .serializers import SubmissionDetailSerializer, SubmissionSummarySerializer, SubmissionWriteSerializer
from .services import submissions as submission_services
from .views_base import TenantAPIView


class SubmissionListView(TenantAPIView):
    def get(self, request):
        page = submission_services.list_submissions(
            request.tenant,
            status=request.query_params.get("status") or None,
            limit=request.query_params.get("limit"),
            offset=request.query_params.get("offset"),
        )
        data = SubmissionSummarySerializer(page.items, many=True, context={"users": page.users}).data
        return Response({"submissions": data, "pagination": page.pagination()})

    def post(self, request):
        serializer = SubmissionWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        submission = submission_services.create_submission(request.tenant, **serializer.validated_data)
        detail = submission_services.load_detail(request.tenant, submission.pk)
        data = SubmissionDetailSerializer(detail.submission, context={"users": detail.users}).data
        return Response({"submission": data}, status=status.HTTP_201_CREATED)


class SubmissionDetailView(TenantAPIView):
    def get(self, request, submission_id):
        detail = submission_services.get_submission(request.tenant, submission_id)
        data = SubmissionDetailSerializer(detail.submission, context={"users": detail.users}).data
        return Response({"submission": data})

    def patch(self, request, submission_id):
        serializer = SubmissionWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        if "status" in request.data:
            # Rejected by the service; status only moves through submit/review.
            fields["status"] = request.data["status"]
        submission_services.update_submission(request.tenant, submission_id, fields)
        detail = submission_services.load_detail(request.tenant, submission_id)
        data = SubmissionDetailSerializer(detail.submission, context={"users": detail.users}).data
        return Response({"submission": data})


class SubmissionSubmitView(TenantAPIView):
    def post(self, request, submission_id):
        submission_services.submit_submission(request.tenant, submission_id)
        detail = submission_services.load_detail(request.tenant, submission_id)
        data = SubmissionDetailSerializer(detail.submission, context={"users": detail.users}).data
        return Response({"submission": data})


class ExpenseTypeListView(TenantAPIView):
    def get(self, request):
        return Response({"expense_types": list_expense_types()})


class MyPermissionsView(TenantAPIView):
    def get(self, request):
        tenant = request.tenant
        payload = permissions_for(tenant.role).as_dict()
        payload["organization_id"] = tenant.organization_id
        payload["user_id"] = tenant.user_id
        return Response(payload)
