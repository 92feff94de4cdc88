"""
x402 facilitator HTTP endpoints.
"""
from loguru import logger
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from facilitator.errors import (
    FacilitatorConfigurationError,
    FacilitatorError,
    FacilitatorValidationError,
    SettlementCancelled,
)
from facilitator.services import get_facilitator

MISCONFIGURATION = 'Facilitator misconfiguration.'


def _request_parts(request_data):
    if not isinstance(request_data, dict):
        return None, None
    return request_data.get('paymentRequirements'), request_data.get('paymentPayload')


class X402SupportedView(APIView):
    """
    List supported payment kinds.

    { "kinds": [ { "x402Version": 1, "scheme": "exact", "network": "base" }, ... ] }
    """

    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        return Response({'kinds': get_facilitator().supported_kinds()}, status=status.HTTP_200_OK)


class X402VerifyView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        return Response({
            'endpoint': '/verify',
            'description': 'POST to verify x402 payments',
            'body': {
                'paymentPayload': 'PaymentPayload',
                'paymentRequirements': 'PaymentRequirements',
            },
        })

    def post(self, request, *args, **kwargs):
        facilitator = get_facilitator()
        raw_requirements, raw_payload = _request_parts(request.data)
        try:
            requirements, payload = facilitator.validate(raw_requirements, raw_payload)
        except FacilitatorValidationError as exc:
            logger.info('x402 verification request rejected: {}', exc.detail)
            return Response(
                {
                    'isValid': False,
                    'invalidReason': exc.reason,
                    'payer': None,
                    'error': exc.to_dict(),
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = facilitator.verify(requirements, payload)
        if result.is_valid:
            logger.debug('x402 authorization verified: nonce={} payer={}', payload.nonce, result.payer)
        else:
            logger.info('x402 verification failed: {}', result.detail)
        return Response(result.to_response(), status=status.HTTP_200_OK)


class X402SettleView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        return Response({
            'endpoint': '/settle',
            'description': 'POST to settle x402 payments',
            'body': {
                'paymentPayload': 'PaymentPayload',
                'paymentRequirements': 'PaymentRequirements',
            },
        })

    def post(self, request, *args, **kwargs) -> Response:
        facilitator = get_facilitator()
        raw_requirements, raw_payload = _request_parts(request.data)
        try:
            requirements, payload = facilitator.validate(raw_requirements, raw_payload)
        except FacilitatorValidationError as exc:
            logger.info('x402 settlement request rejected: {}', exc.detail)
            return Response(
                {
                    'success': False,
                    'errorReason': exc.reason,
                    'transaction': None,
                    'error': exc.to_dict(),
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            signer = facilitator.signer_for(requirements.network)
            outcome = facilitator.settle(signer, payload, requirements)
        except FacilitatorConfigurationError as exc:
            logger.error('x402 settlement misconfiguration: {}', exc)
            return Response(
                {
                    'success': False,
                    'errorReason': MISCONFIGURATION,
                    'transaction': None,
                },
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        except SettlementCancelled as exc:
            logger.warning('x402 settlement for nonce {} interrupted: {}', payload.nonce, exc)
            record = facilitator.store.get(payload.nonce)
            return Response(
                {
                    'success': False,
                    'status': record.status if record else None,
                    'transactionRef': exc.transaction_ref,
                    'transaction': exc.transaction_ref,
                    'errorReason': exc.reason,
                    'indeterminate': True,
                },
                status=status.HTTP_200_OK,
            )
        except FacilitatorError as exc:
            logger.error('x402 settlement failed: {}', exc)
            return Response(
                {
                    'success': False,
                    'errorReason': exc.reason,
                    'transaction': None,
                    'error': exc.to_dict(),
                },
                status=status.HTTP_200_OK,
            )

        if outcome.success:
            logger.info(
                'x402 settlement succeeded for nonce {} tx {} network {}',
                payload.nonce, outcome.transaction_ref, outcome.network)
        else:
            logger.info(
                'x402 settlement for nonce {} did not succeed: status={} reason={}',
                payload.nonce, outcome.status, outcome.error_reason)
        return Response(outcome.to_response(), status=status.HTTP_200_OK)
