"""
Meetings API - instant meeting control and live status for a tenant.
"""
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel, Field

from meetgate.api.deps import get_services, require_tenant_access, require_tenant_admin
from meetgate.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/meetings', tags=['meetings'])


class CreateMeetingRequest(BaseModel):
	title: str | None = None


class CreatedMeeting(BaseModel):
	id: str
	meetingNumber: str
	password: str
	title: str
	joinUrl: str | None = None
	startUrl: str | None = None


class CreateMeetingResponse(BaseModel):
	success: bool
	meeting: CreatedMeeting


class EndMeetingRequest(BaseModel):
	meetingId: str = Field(..., min_length=1)


class EndMeetingResponse(BaseModel):
	success: bool
	meetingId: str


class LiveMeeting(BaseModel):
	meetingNumber: str
	password: str
	title: str


class LiveMeetingResponse(BaseModel):
	live: bool
	source: str | None = None
	meeting: LiveMeeting | None = None


class MeetingStatusResponse(BaseModel):
	meetingId: str
	status: str


class DiagnosticsResponse(BaseModel):
	tenantId: str
	hasCredentials: bool
	fixedMeetingId: str | None = None
	meetingStatus: str | None = None
	meetingTopic: str | None = None
	meetingError: str | None = None
	liveMeetings: List[Dict[str, Any]] = []
	liveMeetingsError: str | None = None
	error: str | None = None


@router.post('/{tenant_id}', response_model=CreateMeetingResponse, status_code=status.HTTP_201_CREATED)
async def create_meeting(
	tenant_id: str,
	request: CreateMeetingRequest | None = Body(default=None),
	admin: dict = Depends(require_tenant_admin),
	services: ServiceContainer = Depends(get_services),
):
	"""Create an instant meeting, ending any meeting that is still live."""
	title = request.title if request else None
	logger.info('Create meeting for tenant %s requested by %s', tenant_id, admin.get('uid'))
	handle = await services.lifecycle.create_instant_meeting(tenant_id, title)
	return CreateMeetingResponse(
		success=True,
		meeting=CreatedMeeting(
			id=handle.id,
			meetingNumber=handle.id,
			password=handle.password,
			title=handle.topic,
			joinUrl=handle.join_url,
			startUrl=handle.start_url,
		),
	)


@router.post('/{tenant_id}/end', response_model=EndMeetingResponse)
async def end_meeting(
	tenant_id: str,
	request: EndMeetingRequest,
	admin: dict = Depends(require_tenant_admin),
	services: ServiceContainer = Depends(get_services),
):
	logger.info('End meeting %s for tenant %s requested by %s', request.meetingId, tenant_id, admin.get('uid'))
	await services.lifecycle.end_meeting(tenant_id, request.meetingId)
	return EndMeetingResponse(success=True, meetingId=request.meetingId)


@router.get('/{tenant_id}/live', response_model=LiveMeetingResponse)
async def get_live_meeting(
	tenant_id: str,
	_user: dict = Depends(require_tenant_access),
	services: ServiceContainer = Depends(get_services),
):
	view = await services.resolver.get_live_meeting(tenant_id)
	if view is None:
		return LiveMeetingResponse(live=False)
	return LiveMeetingResponse(
		live=True,
		source=view.source,
		meeting=LiveMeeting(meetingNumber=view.id, password=view.password, title=view.topic),
	)


@router.get('/{tenant_id}/status/{meeting_id}', response_model=MeetingStatusResponse)
async def get_meeting_status(
	tenant_id: str,
	meeting_id: str,
	_admin: dict = Depends(require_tenant_admin),
	services: ServiceContainer = Depends(get_services),
):
	meeting_status = await services.lifecycle.get_meeting_status(tenant_id, meeting_id)
	return MeetingStatusResponse(meetingId=meeting_id, status=meeting_status)


@router.get('/{tenant_id}/diagnostics', response_model=DiagnosticsResponse)
async def get_diagnostics(
	tenant_id: str,
	_admin: dict = Depends(require_tenant_admin),
	services: ServiceContainer = Depends(get_services),
):
	return DiagnosticsResponse(**await services.lifecycle.diagnose(tenant_id))
