from rest_framework import status
from rest_framework.response import Response

from .exceptions import ValidationError
from .permissions import Role
from .serializers import (
    CommentSerializer,
    CommentWriteSerializer,
    DecisionSerializer,
    SubmissionDetailSerializer,
)
from .services import review as review_services
from .views_base import TenantAPIView


class ReviewQueueView(TenantAPIView):
    required_role = Role.REVIEWER

    def get(self, request):
        page = review_services.list_for_review(
            request.tenant,
            limit=request.query_params.get("limit"),
            offset=request.query_params.get("offset"),
        )
        data = SubmissionDetailSerializer(page.items, many=True, context={"users": page.users}).data
        return Response({"submissions": data, "pagination": page.pagination()})

    def post(self, request):
        serializer = DecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        detail = review_services.submit_decision(
            request.tenant,
            serializer.validated_data["submission_id"],
            serializer.validated_data["decision"],
            serializer.validated_data["comment"],
        )
        data = SubmissionDetailSerializer(detail.submission, context={"users": detail.users}).data
        return Response({"submission": data})


class ReviewCommentsView(TenantAPIView):
    def get(self, request):
        submission_id = request.query_params.get("submission_id") or request.query_params.get("submissionId")
        if not submission_id:
            raise ValidationError("submission_id is required")
        comments, users = review_services.list_comments(request.tenant, submission_id)
        data = CommentSerializer(comments, many=True, context={"users": users}).data
        return Response({"comments": data})

    def post(self, request):
        serializer = CommentWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment, users = review_services.add_comment(
            request.tenant,
            serializer.validated_data["submission_id"],
            serializer.validated_data["text"],
        )
        data = CommentSerializer(comment, context={"users": users}).data
        return Response({"comment": data}, status=status.HTTP_201_CREATED)
