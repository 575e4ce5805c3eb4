"""
Project-level views.
"""

from django.http import JsonResponse


def healthcheck(request):
    """
    Simple healthcheck endpoint.

    Returns 200 OK with status info.
    """
    return JsonResponse({
        "status": "ok",
        "service": "weddingai-backend",
    })
