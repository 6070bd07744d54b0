import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status
from pydantic import BaseModel

from meetgate.api.deps import get_services, require_tenant_access
from meetgate.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/join-token', tags=['join-token'])


class JoinTokenRequest(BaseModel):
	meetingNumber: str | int
	role: int = 0


class JoinTokenResponse(BaseModel):
	token: str
	sdkKey: str


@router.post('/{tenant_id}', response_model=JoinTokenResponse, status_code=status.HTTP_200_OK)
async def create_join_token(
	tenant_id: str,
	request: JoinTokenRequest,
	current_user: dict = Depends(require_tenant_access),
	services: ServiceContainer = Depends(get_services),
):
	uid = current_user.get('uid') or 'unknown'
	logger.info('Join token requested by uid=%s tenant=%s meeting=%s role=%s', uid, tenant_id, request.meetingNumber, request.role)
	if request.role == 1 and not current_user.get('isAdmin'):
		raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Only admins can join as host')
	join_token = await services.join_signatures.generate_join_token(tenant_id, str(request.meetingNumber), request.role)
	return JoinTokenResponse(token=join_token.token, sdkKey=join_token.sdk_key)
