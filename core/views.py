from django.http import JsonResponse
from django.utils import timezone

API_INFO = {
    'name': 'x402 Terminal Facilitator',
    'version': '0.1.0',
    'description': 'x402 payment facilitator settling exact EVM authorizations into a payment terminal',
    'endpoints': {
        '/health': 'Health check endpoint',
        '/supported': 'GET - Returns supported payment kinds',
        '/verify': 'GET/POST - Verify x402 payment payloads',
        '/settle': 'GET/POST - Settle x402 payments',
    },
    'documentation': 'https://x402.org',
}


def home(request):
    return JsonResponse(API_INFO)


def api_info(request):
    return JsonResponse(API_INFO)


def health(request):
    return JsonResponse({
        'status': 'healthy',
        'timestamp': timezone.now().isoformat(),
    })
