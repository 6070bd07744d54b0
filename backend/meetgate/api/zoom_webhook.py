import logging

from fastapi import APIRouter, Depends, Request

from meetgate.api.deps import get_services
from meetgate.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/webhook', tags=['zoom-webhook'])

SIGNATURE_HEADER = 'x-zm-signature'
TIMESTAMP_HEADER = 'x-zm-request-timestamp'


async def _ingest(request: Request, services: ServiceContainer, tenant_id: str | None = None) -> dict:
	# Signatures cover the exact bytes Zoom sent, so read the body raw.
	raw_body = await request.body()
	return await services.webhooks.handle_event(
		raw_body,
		request.headers.get(SIGNATURE_HEADER),
		request.headers.get(TIMESTAMP_HEADER),
		tenant_id=tenant_id,
	)


@router.post('')
async def zoom_webhook(request: Request, services: ServiceContainer = Depends(get_services)):
	"""
	Zoom webhook endpoint for meeting lifecycle events.
	Handles:
	- endpoint.url_validation (challenge)
	- meeting.started
	- meeting.ended
	"""
	return await _ingest(request, services)


@router.post('/{tenant_id}')
async def zoom_tenant_webhook(tenant_id: str, request: Request, services: ServiceContainer = Depends(get_services)):
	"""Same as ``POST /webhook``, with the tenant named in the URL."""
	return await _ingest(request, services, tenant_id)


@router.get('')
async def zoom_webhook_status():
	return {'status': 'ok', 'message': 'Zoom webhook endpoint is active'}
