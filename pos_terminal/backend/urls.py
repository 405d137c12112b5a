# backend/urls.py
"""
PROJECT URLS

- /api/               index of modules
- /api/health/        liveness for the till supervisor (no session needed)
- /api/schema/, /api/docs/   OpenAPI
- /api/terminal/...   POS session, grid, cart, checkout, invoice
"""

from __future__ import annotations

from django.conf import settings
from django.urls import include, path
from django.views.generic import RedirectView
from drf_spectacular.utils import extend_schema, inline_serializer
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework import serializers
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from terminal.services.terminal import registry

INDEX = {
    "message": "POS Terminal API is running",
    "docs": {"swagger": "/api/docs/", "schema": "/api/schema/"},
    "modules": {"terminal": "/api/terminal/"},
}


@extend_schema(
    responses=inline_serializer(
        name="ApiIndex",
        fields={
            "message": serializers.CharField(),
            "docs": serializers.DictField(child=serializers.CharField()),
            "modules": serializers.DictField(child=serializers.CharField()),
        },
    )
)
@api_view(["GET"])
@permission_classes([AllowAny])
def api_root(request):
    return Response(INDEX)


@extend_schema(
    responses=inline_serializer(
        name="ServiceHealth",
        fields={
            "status": serializers.CharField(),
            "open_terminals": serializers.IntegerField(),
            "retail_api": serializers.CharField(),
        },
    )
)
@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request):
    """Process is up; how many tills are open and which backend they use."""
    return Response(
        {
            "status": "ok",
            "open_terminals": len(registry),
            "retail_api": settings.RETAIL_API["BASE_URL"],
        }
    )


api_urlpatterns = [
    path("", api_root, name="api-root"),
    path("health/", health_check, name="health-check"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
    path("terminal/", include("terminal.urls")),
]

urlpatterns = [
    path("", RedirectView.as_view(url="/api/docs/", permanent=False), name="root"),
    path("api/", include(api_urlpatterns)),
]
