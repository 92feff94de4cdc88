from django.conf import settings
from django.http import HttpResponse

ALLOW_METHODS = 'GET, POST, PUT, DELETE, OPTIONS'
ALLOW_HEADERS = 'Origin, X-Requested-With, Content-Type, Accept, Authorization'


class CorsMiddleware:
    """Open CORS policy for the facilitator endpoints; answers preflight directly."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        if request.method == 'OPTIONS':
            response = HttpResponse(status=200)
        else:
            response = self.get_response(request)
        response['Access-Control-Allow-Origin'] = getattr(settings, 'CORS_ALLOW_ORIGIN', '*')
        response['Access-Control-Allow-Methods'] = ALLOW_METHODS
        response['Access-Control-Allow-Headers'] = ALLOW_HEADERS
        return response
