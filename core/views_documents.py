import mimetypes
import posixpath

from django.http import FileResponse
from django.core.files.storage import default_storage
from rest_framework import status
from rest_framework.parsers import FormParser, MultiPartParser
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import NotFound, ValidationError
from .serializers import EvidenceFileSerializer
from .services import documents as document_services
from .storage import unsign_object_key
from .views_base import TenantAPIView


class SubmissionFilesView(TenantAPIView):
    parser_classes = [MultiPartParser, FormParser]

    def get(self, request, submission_id):
        files = document_services.list_files(request.tenant, submission_id)
        return Response({"files": EvidenceFileSerializer(files, many=True).data})

    def post(self, request, submission_id):
        upload = request.FILES.get("file")
        if upload is None:
            raise ValidationError("No file provided")
        evidence = document_services.ingest_upload(
            request.tenant,
            submission_id,
            upload,
            declared_kind=request.data.get("kind") or None,
        )
        return Response({"file": EvidenceFileSerializer(evidence).data}, status=status.HTTP_201_CREATED)


class FileDetailView(TenantAPIView):
    def delete(self, request, file_id):
        document_services.delete_file(request.tenant, file_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class FileUrlView(TenantAPIView):
    def get(self, request, file_id):
        return Response(document_services.file_download_url(request.tenant, file_id, request=request))


class FileAnalyzeView(TenantAPIView):
    def post(self, request, file_id):
        job = document_services.request_analysis(request.tenant, file_id)
        return Response(
            {"job": {"id": job.pk, "file_id": str(job.file_id), "status": job.status}},
            status=status.HTTP_202_ACCEPTED,
        )


class FileDownloadView(APIView):
    """Serves a stored object for a valid, unexpired signed token. The token is the credential."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def get(self, request, token):
        key, filename = unsign_object_key(token)
        try:
            handle = default_storage.open(key, "rb")
        except FileNotFoundError:
            raise NotFound("Stored object not found")
        filename = filename or posixpath.basename(key)
        content_type, _ = mimetypes.guess_type(filename)
        return FileResponse(
            handle,
            as_attachment=True,
            filename=filename,
            content_type=content_type or "application/octet-stream",
        )
