"""
Answers "is this tenant live right now, and with which meeting".

Layers are tried in a fixed order and the first definitive answer wins:

1. webhook-populated ``meeting_status`` rows (trusted, no provider call)
2. a recent ``ended`` row suppresses every provider query after it
3. direct lookup of the tenant's fixed meeting, before any webhook arrived
4. the OAuth user's live-meeting listing
5. every active user's live listing on the account

Provider polling only exists for tenants without webhooks and for the gap
before the first webhook arrives.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import parse_qs, urlparse

from meetgate.core.errors import ProviderRequestFailed
from meetgate.services.credential_store import CredentialStore, TenantCredentials
from meetgate.services.meeting_status_repository import (
	STATUS_ENDED,
	MeetingStatusRecord,
	MeetingStatusRepository,
)
from meetgate.services.token_broker import TokenBroker
from meetgate.services.zoom_client import ZoomClient

logger = logging.getLogger(__name__)

SOURCE_DATABASE = 'database'
SOURCE_PROVIDER = 'provider'


@dataclass(frozen=True)
class LiveMeetingView:
	id: str
	topic: str
	password: str
	source: str


class _NotLive:
	def __repr__(self) -> str:
		return 'NOT_LIVE'


NOT_LIVE = _NotLive()

_UNSET = object()


def extract_password(meeting: Dict[str, Any] | None) -> str:
	"""Explicit password field, else the ``pwd`` parameter of the join URL."""
	if not meeting:
		return ''
	if meeting.get('password'):
		return str(meeting['password'])
	join_url = meeting.get('join_url')
	if join_url:
		values = parse_qs(urlparse(join_url).query).get('pwd')
		if values:
			return values[0]
	return ''


class ResolutionContext:
	"""Per-call state shared by the strategies; lookups are memoized."""

	def __init__(
		self,
		*,
		tenant_id: str,
		credentials: TenantCredentials,
		token_broker: TokenBroker,
		zoom_client: ZoomClient,
		repository: MeetingStatusRepository,
		now: datetime,
	) -> None:
		self.tenant_id = tenant_id
		self.credentials = credentials
		self.zoom = zoom_client
		self.repository = repository
		self.now = now
		self._token_broker = token_broker
		self._token: Optional[str] = None
		self._latest: Any = _UNSET

	@property
	def fixed_meeting_id(self) -> Optional[str]:
		return self.credentials.fixed_meeting_id or None

	@property
	def default_title(self) -> str:
		return self.credentials.default_meeting_title or 'Meeting'

	async def access_token(self) -> str:
		if self._token is None:
			self._token = await self._token_broker.get_access_token(self.tenant_id)
		return self._token

	async def latest_record(self) -> Optional[MeetingStatusRecord]:
		if self._latest is _UNSET:
			try:
				self._latest = await self.repository.latest_for_account(self.credentials.account_id)
			except Exception as exc:
				logger.error('Meeting status lookup failed for tenant %s: %s', self.tenant_id, exc)
				self._latest = None
		return self._latest

	def view_from_listing(self, meeting: Dict[str, Any]) -> LiveMeetingView:
		return LiveMeetingView(
			id=str(meeting.get('id')),
			topic=meeting.get('topic') or self.default_title,
			password=extract_password(meeting),
			source=SOURCE_PROVIDER,
		)

	def pick_live(self, meetings: Sequence[Dict[str, Any]]) -> Optional[LiveMeetingView]:
		"""Prefer the fixed meeting when it is in the listing, else the first entry."""
		if not meetings:
			return None
		fixed = self.fixed_meeting_id
		if fixed:
			for meeting in meetings:
				if str(meeting.get('id')) == fixed:
					return self.view_from_listing(meeting)
		return self.view_from_listing(meetings[0])


class ResolutionStrategy:
	name = 'strategy'

	async def try_resolve(self, ctx: ResolutionContext):
		"""Return a LiveMeetingView, NOT_LIVE to stop, or None to fall through."""
		raise NotImplementedError


class WebhookStatusStrategy(ResolutionStrategy):
	name = 'webhook-status'

	async def try_resolve(self, ctx: ResolutionContext):
		try:
			record = None
			if ctx.fixed_meeting_id:
				record = await ctx.repository.find_started(ctx.fixed_meeting_id)
				if record is not None and record.tenant_account_id != ctx.credentials.account_id:
					logger.warning('Ignoring status of meeting %s: owned by another account', record.meeting_id)
					record = None
			if record is None and ctx.credentials.account_id:
				record = await ctx.repository.latest_started_for_account(ctx.credentials.account_id)
		except Exception as exc:
			logger.error('Meeting status query failed for tenant %s: %s', ctx.tenant_id, exc)
			return None
		if record is None:
			return None
		logger.info('Live meeting %s for tenant %s found in meeting_status', record.meeting_id, ctx.tenant_id)
		return LiveMeetingView(
			id=record.meeting_id,
			topic=record.topic or ctx.default_title,
			password=record.password or '',
			source=SOURCE_DATABASE,
		)


class RecentlyEndedStrategy(ResolutionStrategy):
	name = 'recently-ended'

	def __init__(self, window_seconds: int) -> None:
		self.window = timedelta(seconds=window_seconds)

	async def try_resolve(self, ctx: ResolutionContext):
		latest = await ctx.latest_record()
		if latest is None or latest.status != STATUS_ENDED:
			return None
		ended_at = latest.ended_at or latest.updated_at
		if ended_at is not None and ctx.now - ended_at <= self.window:
			logger.info('Meeting %s for tenant %s ended %ss ago; not polling Zoom', latest.meeting_id, ctx.tenant_id, int((ctx.now - ended_at).total_seconds()))
			return NOT_LIVE
		return None


class FixedMeetingStrategy(ResolutionStrategy):
	name = 'fixed-meeting'

	async def try_resolve(self, ctx: ResolutionContext):
		fixed = ctx.fixed_meeting_id
		if not fixed:
			return None
		if await ctx.latest_record() is not None:
			return None
		token = await ctx.access_token()
		details = await ctx.zoom.get_meeting(token, fixed)
		if details is None:
			logger.info('Fixed meeting %s for tenant %s does not exist on Zoom', fixed, ctx.tenant_id)
			return None
		# A scheduled meeting is not necessarily in progress; the live listing decides.
		host_id = details.get('host_id') or 'me'
		live = await ctx.zoom.list_live_meetings(token, host_id)
		for meeting in live:
			if str(meeting.get('id')) == fixed:
				return LiveMeetingView(
					id=fixed,
					topic=details.get('topic') or meeting.get('topic') or ctx.default_title,
					password=extract_password(details) or extract_password(meeting),
					source=SOURCE_PROVIDER,
				)
		return None


class LiveListingStrategy(ResolutionStrategy):
	name = 'live-listing'

	async def try_resolve(self, ctx: ResolutionContext):
		token = await ctx.access_token()
		return ctx.pick_live(await ctx.zoom.list_live_meetings(token, 'me'))


class AccountUsersStrategy(ResolutionStrategy):
	"""The OAuth identity is not always the user who started the meeting."""
	name = 'account-users'

	def __init__(self, max_users: int) -> None:
		self.max_users = max_users

	async def try_resolve(self, ctx: ResolutionContext):
		token = await ctx.access_token()
		users = await ctx.zoom.list_users(token, page_size=self.max_users)
		if len(users) <= 1:
			return None
		for user in users[:self.max_users]:
			user_id = user.get('id')
			if not user_id:
				continue
			try:
				meetings = await ctx.zoom.list_live_meetings(token, user_id)
			except ProviderRequestFailed as exc:
				logger.warning('Live listing failed for Zoom user %s: %s', user_id, exc.detail)
				continue
			view = ctx.pick_live(meetings)
			if view is not None:
				logger.info('Live meeting %s found under Zoom user %s', view.id, user_id)
				return view
		return None


def default_strategies(*, recently_ended_window_seconds: int, max_account_users: int) -> List[ResolutionStrategy]:
	return [
		WebhookStatusStrategy(),
		RecentlyEndedStrategy(recently_ended_window_seconds),
		FixedMeetingStrategy(),
		LiveListingStrategy(),
		AccountUsersStrategy(max_account_users),
	]


class LiveMeetingResolver:

	def __init__(
		self,
		credential_store: CredentialStore,
		token_broker: TokenBroker,
		zoom_client: ZoomClient,
		repository: MeetingStatusRepository,
		strategies: Sequence[ResolutionStrategy],
		clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
	) -> None:
		self._credentials = credential_store
		self._token_broker = token_broker
		self._zoom = zoom_client
		self._repository = repository
		self._strategies = list(strategies)
		self._clock = clock

	async def get_live_meeting(self, tenant_id: str) -> Optional[LiveMeetingView]:
		credentials = await self._credentials.get(tenant_id)
		if credentials is None or not credentials.is_configured:
			logger.info('No credentials found for tenant %s', tenant_id)
			return None

		ctx = ResolutionContext(
			tenant_id=tenant_id,
			credentials=credentials,
			token_broker=self._token_broker,
			zoom_client=self._zoom,
			repository=self._repository,
			now=self._clock(),
		)
		for strategy in self._strategies:
			try:
				result = await strategy.try_resolve(ctx)
			except ProviderRequestFailed as exc:
				logger.warning('%s lookup failed for tenant %s: %s', strategy.name, tenant_id, exc.detail)
				continue
			if result is NOT_LIVE:
				return None
			if result is not None:
				return result

		logger.info('No live meeting found for tenant %s', tenant_id)
		return None
