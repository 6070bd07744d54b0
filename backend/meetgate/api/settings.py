import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from meetgate.api.deps import get_services, require_tenant_admin
from meetgate.core.errors import CredentialsInvalid, StoreUnavailable
from meetgate.services.container import ServiceContainer
from meetgate.services.credential_store import TenantCredentials, credentials_with

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/settings', tags=['settings'])


class NotificationTemplates(BaseModel):
	startTitle: str | None = None
	startBody: str | None = None
	endTitle: str | None = None
	endBody: str | None = None


class MaskedCredentials(BaseModel):
	accountId: str
	clientId: str
	clientSecret: str
	sdkKey: str
	sdkSecret: str
	webhookSecret: str
	fixedMeetingId: str
	defaultMeetingTitle: str
	brandColor: str
	notificationTemplates: NotificationTemplates | None = None
	updatedAt: str | None = None


class SettingsResponse(BaseModel):
	configured: bool
	credentials: MaskedCredentials | None = None
	adminUsernames: List[str] = []


class SaveSettingsRequest(BaseModel):
	accountId: str | None = None
	clientId: str | None = None
	clientSecret: str | None = None
	sdkKey: str | None = None
	sdkSecret: str | None = None
	fixedMeetingId: str | None = None
	defaultMeetingTitle: str | None = None
	brandColor: str | None = None
	webhookSecret: str | None = None
	notificationTemplates: NotificationTemplates | None = None
	adminUsernames: List[str] | None = None
	skipValidation: bool = False


class SaveSettingsResponse(BaseModel):
	success: bool
	configured: bool
	message: str


class DeleteSettingsResponse(BaseModel):
	success: bool


@router.get('/{tenant_id}', response_model=SettingsResponse)
async def get_tenant_settings(
	tenant_id: str,
	_admin: dict = Depends(require_tenant_admin),
	services: ServiceContainer = Depends(get_services),
):
	store = services.credential_store
	credentials = await store.get(tenant_id)
	stored = await store.get_settings(tenant_id)
	admins = stored.admin_usernames if stored else []
	if credentials is None:
		return SettingsResponse(configured=False, credentials=None, adminUsernames=admins)
	return SettingsResponse(
		configured=credentials.is_configured,
		credentials=MaskedCredentials(**store.masked_view(credentials)),
		adminUsernames=admins,
	)


@router.post('/{tenant_id}', response_model=SaveSettingsResponse)
async def save_tenant_settings(
	tenant_id: str,
	request: SaveSettingsRequest,
	admin: dict = Depends(require_tenant_admin),
	services: ServiceContainer = Depends(get_services),
):
	store = services.credential_store
	partial = request.model_dump(exclude={'skipValidation'}, exclude_none=True)
	logger.info('Settings update for tenant %s by %s: fields=%s skipValidation=%s', tenant_id, admin.get('uid'), sorted(partial), request.skipValidation)

	stored = await store.get_settings(tenant_id)
	merged = credentials_with(stored.credentials if stored else TenantCredentials(), partial)

	if not request.skipValidation:
		validation = await store.validate(merged)
		if not validation.valid:
			raise CredentialsInvalid(validation.reason or 'rejected', f'Invalid Zoom credentials: {validation.error}')

	if not await store.save(tenant_id, partial):
		raise StoreUnavailable('Failed to save credentials')
	services.token_broker.invalidate(tenant_id)

	return SaveSettingsResponse(
		success=True,
		configured=merged.is_configured,
		message='Zoom credentials saved successfully',
	)


@router.delete('/{tenant_id}', response_model=DeleteSettingsResponse)
async def delete_tenant_settings(
	tenant_id: str,
	admin: dict = Depends(require_tenant_admin),
	services: ServiceContainer = Depends(get_services),
):
	logger.info('Offboarding tenant %s requested by %s', tenant_id, admin.get('uid'))
	if not await services.credential_store.delete(tenant_id):
		raise StoreUnavailable('Failed to delete settings')
	services.token_broker.invalidate(tenant_id)
	return DeleteSettingsResponse(success=True)
