from __future__ import annotations

from rest_framework import serializers

from .expense_types import expense_type_label
from .identity import UNKNOWN_USER_EMAIL, UserInfo
from .models import Comment, EvidenceFile, Submission


def _user_payload(users: dict, user_id) -> dict:
    info = users.get(user_id) or UserInfo(id=user_id, email=UNKNOWN_USER_EMAIL)
    return info.as_dict()


# --- Input ---


class SubmissionWriteSerializer(serializers.Serializer):
    expense_type = serializers.CharField(max_length=100)
    title = serializers.CharField(max_length=255, required=False, allow_null=True, allow_blank=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True, min_value=0)
    spent_at = serializers.DateField(required=False, allow_null=True)

    def validate_expense_type(self, value: str) -> str:
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Expense type is required")
        return value


class DecisionSerializer(serializers.Serializer):
    submission_id = serializers.UUIDField()
    decision = serializers.CharField()
    comment = serializers.CharField(allow_blank=True, trim_whitespace=False)


class CommentWriteSerializer(serializers.Serializer):
    submission_id = serializers.UUIDField()
    text = serializers.CharField(allow_blank=True, trim_whitespace=False)


# --- Output ---


class EvidenceFileSerializer(serializers.ModelSerializer):
    class Meta:
        model = EvidenceFile
        fields = [
            "id",
            "kind",
            "original_filename",
            "size",
            "mime_type",
            "extracted_text",
            "analysis",
            "created_at",
        ]


class CommentSerializer(serializers.ModelSerializer):
    author = serializers.SerializerMethodField()

    class Meta:
        model = Comment
        fields = ["id", "submission_id", "author", "text", "decision", "created_at"]

    def get_author(self, obj: Comment) -> dict:
        return _user_payload(self.context.get("users", {}), obj.author_id)


class SubmissionSummarySerializer(serializers.ModelSerializer):
    expense_type_label = serializers.SerializerMethodField()
    created_by = serializers.SerializerMethodField()
    files = EvidenceFileSerializer(many=True, read_only=True)
    comment_count = serializers.IntegerField(read_only=True, default=0)

    class Meta:
        model = Submission
        fields = [
            "id",
            "expense_type",
            "expense_type_label",
            "title",
            "amount",
            "spent_at",
            "status",
            "created_by",
            "created_at",
            "updated_at",
            "files",
            "comment_count",
        ]

    def get_expense_type_label(self, obj: Submission) -> str:
        return expense_type_label(obj.expense_type)

    def get_created_by(self, obj: Submission) -> dict:
        return _user_payload(self.context.get("users", {}), obj.created_by_id)


class SubmissionDetailSerializer(SubmissionSummarySerializer):
    comments = CommentSerializer(many=True, read_only=True)

    class Meta(SubmissionSummarySerializer.Meta):
        fields = [f for f in SubmissionSummarySerializer.Meta.fields if f != "comment_count"] + ["comments"]
