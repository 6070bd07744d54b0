import logging

from fastapi import Depends, HTTPException, Request, status

from meetgate.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def get_services(request: Request) -> ServiceContainer:
	return request.app.state.services


async def get_storefront_user(request: Request, services: ServiceContainer = Depends(get_services)) -> dict:
	"""Resolve the storefront user from the proxied request headers."""
	user_id = services.access_gate.verify_user_token(request.headers)
	if not user_id:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Missing or invalid storefront user token')
	username = request.headers.get(services.settings.storefront_username_header) or ''
	return {'uid': user_id, 'username': username}


async def _is_tenant_admin(services: ServiceContainer, tenant_id: str, user: dict) -> bool:
	if await services.credential_store.is_admin(tenant_id, user.get('username') or ''):
		return True
	access = await services.access_gate.check_access(tenant_id, user['uid'])
	return access.is_admin


async def require_tenant_admin(
	tenant_id: str,
	user: dict = Depends(get_storefront_user),
	services: ServiceContainer = Depends(get_services),
) -> dict:
	if await _is_tenant_admin(services, tenant_id, user):
		return {**user, 'isAdmin': True}
	logger.warning('User %s denied admin access to tenant %s', user.get('uid'), tenant_id)
	raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only admins can manage this integration')


async def require_tenant_access(
	tenant_id: str,
	user: dict = Depends(get_storefront_user),
	services: ServiceContainer = Depends(get_services),
) -> dict:
	if await services.credential_store.is_admin(tenant_id, user.get('username') or ''):
		return {**user, 'isAdmin': True}
	access = await services.access_gate.check_access(tenant_id, user['uid'])
	if access.is_admin:
		return {**user, 'isAdmin': True}
	if access.has_access:
		return {**user, 'isAdmin': False}
	logger.info('User %s has no access to tenant %s', user.get('uid'), tenant_id)
	raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='You do not have access to this content')
