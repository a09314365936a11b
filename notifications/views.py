from rest_framework.response import Response

from core.exceptions import NotFound, ValidationError
from core.services.submissions import clamp_pagination
from core.views_base import TenantAPIView

from . import services
from .serializers import NotificationSerializer


def _parse_read_filter(raw):
    if raw in (None, ""):
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes"}:
        return True
    if value in {"0", "false", "no"}:
        return False
    raise ValidationError("read must be true or false")


class NotificationListView(TenantAPIView):
    def get(self, request):
        tenant = request.tenant
        limit, offset = clamp_pagination(request.query_params.get("limit"), request.query_params.get("offset"))
        qs = services.notifications_for(
            tenant.organization_id,
            tenant.user_id,
            read=_parse_read_filter(request.query_params.get("read")),
        )
        total = qs.count()
        items = list(qs[offset:offset + limit])
        return Response({
            "notifications": NotificationSerializer(items, many=True).data,
            "unread_count": services.unread_count(tenant.organization_id, tenant.user_id),
            "pagination": {
                "total": total,
                "limit": limit,
                "offset": offset,
                "has_more": offset + len(items) < total,
            },
        })


class NotificationMarkReadView(TenantAPIView):
    def post(self, request, notification_id):
        tenant = request.tenant
        if not services.mark_read(tenant.organization_id, tenant.user_id, notification_id):
            raise NotFound("Notification not found")
        return Response({"success": True})


class NotificationMarkAllReadView(TenantAPIView):
    def post(self, request):
        tenant = request.tenant
        updated = services.mark_all_read(tenant.organization_id, tenant.user_id)
        return Response({"success": True, "updated": updated})
