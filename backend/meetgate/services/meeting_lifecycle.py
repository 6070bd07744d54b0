import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from meetgate.core.errors import ProviderRequestFailed
from meetgate.services.credential_store import DEFAULT_MEETING_TITLE, CredentialStore
from meetgate.services.live_meeting_resolver import extract_password
from meetgate.services.token_broker import TokenBroker
from meetgate.services.zoom_client import ZoomClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeetingHandle:
	id: str
	topic: str
	password: str
	join_url: Optional[str]
	start_url: Optional[str]


class MeetingLifecycleService:
	"""Instant meeting creation and termination, at most one live meeting per tenant."""

	MEETING_DURATION_MINUTES = 120

	def __init__(
		self,
		credential_store: CredentialStore,
		token_broker: TokenBroker,
		zoom_client: ZoomClient,
		clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
	) -> None:
		self._credentials = credential_store
		self._token_broker = token_broker
		self._zoom = zoom_client
		self._clock = clock

	async def default_title(self, tenant_id: str) -> str:
		credentials = await self._credentials.get(tenant_id)
		base = (credentials.default_meeting_title if credentials else None) or DEFAULT_MEETING_TITLE
		return f'{base} {self._clock().strftime("%m-%d-%Y")}'

	async def create_instant_meeting(self, tenant_id: str, title: str | None = None) -> MeetingHandle:
		topic = (title or '').strip() or await self.default_title(tenant_id)
		ended = await self.end_all_live(tenant_id)
		logger.info('Creating instant meeting for tenant %s (ended %d live meetings first)', tenant_id, ended)

		access_token = await self._token_broker.get_access_token(tenant_id)
		payload = {
			'topic': topic,
			'type': 2,  # scheduled, joinable immediately
			'start_time': self._clock().astimezone(timezone.utc).replace(microsecond=0).isoformat().replace('+00:00', 'Z'),
			'duration': self.MEETING_DURATION_MINUTES,
			'timezone': 'UTC',
			'settings': {
				'host_video': True,
				'participant_video': True,
				'join_before_host': True,
				'mute_upon_entry': True,
				'waiting_room': False,
				'audio': 'both',
				'auto_recording': 'none',
			},
		}
		z = await self._zoom.create_meeting(access_token, payload)
		meeting_id_raw = z.get('id')
		if meeting_id_raw is None:
			raise ProviderRequestFailed('create Zoom meeting', 'response did not include a meeting id')
		meeting_id = str(meeting_id_raw)
		logger.info('Zoom meeting %s created for tenant %s', meeting_id, tenant_id)
		return MeetingHandle(
			id=meeting_id,
			topic=z.get('topic') or topic,
			password=extract_password(z),
			join_url=z.get('join_url'),
			start_url=z.get('start_url'),
		)

	async def end_meeting(self, tenant_id: str, meeting_id: str) -> None:
		"""End a meeting on Zoom; a meeting Zoom no longer knows counts as ended."""
		meeting_key = str(meeting_id).strip()
		access_token = await self._token_broker.get_access_token(tenant_id)
		if await self._zoom.end_meeting(access_token, meeting_key):
			logger.info('Ended Zoom meeting %s for tenant %s', meeting_key, tenant_id)
		else:
			logger.info('Zoom meeting %s for tenant %s was already gone', meeting_key, tenant_id)

	async def end_all_live(self, tenant_id: str) -> int:
		"""Best-effort sweep over the tenant's live meetings; returns how many were ended."""
		access_token = await self._token_broker.get_access_token(tenant_id)
		try:
			live = await self._zoom.list_live_meetings(access_token, 'me')
		except ProviderRequestFailed as exc:
			logger.error('Failed to list live meetings for tenant %s: %s', tenant_id, exc.detail)
			return 0

		ended = 0
		for meeting in live:
			meeting_id = str(meeting.get('id'))
			try:
				await self.end_meeting(tenant_id, meeting_id)
				ended += 1
			except ProviderRequestFailed as exc:
				logger.error('Failed to end meeting %s for tenant %s: %s', meeting_id, tenant_id, exc.detail)
		return ended

	async def get_meeting_status(self, tenant_id: str, meeting_id: str) -> str:
		"""One of ``waiting``, ``started``, ``ended`` or ``notfound``."""
		access_token = await self._token_broker.get_access_token(tenant_id)
		try:
			details = await self._zoom.get_meeting(access_token, str(meeting_id).strip())
		except ProviderRequestFailed as exc:
			logger.warning('Meeting status lookup failed for %s: %s', meeting_id, exc.detail)
			return 'notfound'
		if details is None:
			return 'notfound'
		return details.get('status') or 'waiting'

	async def diagnose(self, tenant_id: str) -> Dict[str, Any]:
		"""What Zoom currently reports for the tenant's fixed meeting and live listing."""
		credentials = await self._credentials.get(tenant_id)
		if credentials is None:
			return {'tenantId': tenant_id, 'hasCredentials': False, 'error': 'No credentials found'}

		report: Dict[str, Any] = {
			'tenantId': tenant_id,
			'hasCredentials': True,
			'fixedMeetingId': credentials.fixed_meeting_id,
			'meetingStatus': None,
			'meetingTopic': None,
			'meetingError': None,
			'liveMeetings': [],
			'liveMeetingsError': None,
		}
		access_token = await self._token_broker.get_access_token(tenant_id)
		if credentials.fixed_meeting_id:
			try:
				details = await self._zoom.get_meeting(access_token, credentials.fixed_meeting_id)
			except ProviderRequestFailed as exc:
				report['meetingError'] = exc.detail
			else:
				if details is None:
					report['meetingStatus'] = 'notfound'
				else:
					report['meetingStatus'] = details.get('status')
					report['meetingTopic'] = details.get('topic')
		try:
			live = await self._zoom.list_live_meetings(access_token, 'me')
		except ProviderRequestFailed as exc:
			report['liveMeetingsError'] = exc.detail
		else:
			report['liveMeetings'] = [
				{'id': str(m.get('id')), 'topic': m.get('topic'), 'status': m.get('status')}
				for m in live
			]
		return report
