from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from .permissions import HasMinimumRole
from .tenancy import tenant_context_from_request


class TenantAPIView(APIView):
    """
    APIView bound to one organization.

    ``request.tenant`` is resolved before permission checks, so ``required_role``
    on a subclass gates the whole view.
    """

    permission_classes = [IsAuthenticated, HasMinimumRole]
    required_role = None

    def check_permissions(self, request):
        if request.user and request.user.is_authenticated:
            request.tenant = tenant_context_from_request(request)
        super().check_permissions(request)
