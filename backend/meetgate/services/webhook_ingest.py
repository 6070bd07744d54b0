import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import HTTPException, status

from meetgate.core.errors import SignatureVerificationFailed, StoreUnavailable
from meetgate.services.credential_store import CredentialStore, TenantCredentials
from meetgate.services.live_meeting_resolver import extract_password
from meetgate.services.meeting_status_repository import STATUS_ENDED, STATUS_STARTED, MeetingStatusRepository
from meetgate.services.token_broker import TokenBroker
from meetgate.services.zoom_client import ZoomClient
from meetgate.utils.masking import mask_identifier

logger = logging.getLogger(__name__)

URL_VALIDATION_EVENT = 'endpoint.url_validation'
MEETING_STARTED_EVENT = 'meeting.started'
MEETING_ENDED_EVENT = 'meeting.ended'


class WebhookVerificationMode(str, Enum):
	VERIFIED = 'verified'
	# No secret on file yet (first-time setup); events are accepted as-is.
	UNVERIFIED = 'unverified'


def sign_challenge(secret: str, plain_token: str) -> str:
	return hmac.new(secret.encode('utf-8'), plain_token.encode('utf-8'), hashlib.sha256).hexdigest()


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
	message = f'v0:{timestamp}:{raw_body.decode("utf-8")}'
	return 'v0=' + hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).hexdigest()


class WebhookIngestService:
	"""Verifies Zoom webhook deliveries and keeps ``meeting_status`` current."""

	def __init__(
		self,
		credential_store: CredentialStore,
		repository: MeetingStatusRepository,
		token_broker: TokenBroker,
		zoom_client: ZoomClient,
		*,
		bootstrap_secret: str | None = None,
		max_skew_seconds: int = 300,
		clock: Callable[[], float] = time.time,
	) -> None:
		self._credentials = credential_store
		self._repository = repository
		self._token_broker = token_broker
		self._zoom = zoom_client
		self._bootstrap_secret = bootstrap_secret
		self._max_skew = max_skew_seconds
		self._clock = clock

	def _now(self) -> datetime:
		return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

	async def handle_event(
		self,
		raw_body: bytes,
		signature: str | None,
		timestamp: str | None,
		tenant_id: str | None = None,
	) -> Dict[str, Any]:
		try:
			body = json.loads(raw_body or b'{}')
		except ValueError:
			raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Webhook body is not valid JSON')
		if not isinstance(body, dict):
			raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Webhook body must be a JSON object')

		event = body.get('event')
		payload = body.get('payload')
		if not isinstance(payload, dict):
			payload = {}
		logger.info('Zoom webhook received: %s', event)

		if event == URL_VALIDATION_EVENT:
			return await self._answer_challenge(payload, tenant_id)

		account_id = payload.get('account_id') or ''
		tenant = await self._locate_tenant(account_id, tenant_id)
		if tenant_id and tenant is None:
			logger.error('Zoom webhook for unknown tenant %s', tenant_id)
			raise SignatureVerificationFailed('Unknown webhook tenant')
		if tenant and account_id and account_id != tenant[1].account_id:
			logger.error('Zoom webhook account %s does not belong to tenant %s', mask_identifier(account_id), tenant[0])
			raise SignatureVerificationFailed('Webhook account does not match tenant')

		secret = tenant[1].webhook_secret if tenant else None
		mode = self.verify_signature(raw_body, signature, timestamp, secret)

		meeting = payload.get('object')
		if not isinstance(meeting, dict) or meeting.get('id') is None:
			logger.info('No meeting payload in webhook %s', event)
			return {'received': True, 'verification': mode.value}
		if tenant is None:
			logger.info('Zoom webhook %s for unknown account %s ignored', event, mask_identifier(account_id))
			return {'received': True, 'verification': mode.value}

		if event == MEETING_STARTED_EVENT:
			await self._record(body, meeting, tenant, STATUS_STARTED)
		elif event == MEETING_ENDED_EVENT:
			await self._record(body, meeting, tenant, STATUS_ENDED)
		else:
			logger.info('Zoom webhook %s (no handler)', event)
		return {'received': True, 'verification': mode.value}

	def verify_signature(
		self,
		raw_body: bytes,
		signature: str | None,
		timestamp: str | None,
		secret: str | None,
	) -> WebhookVerificationMode:
		if not secret:
			logger.warning('No webhook secret on file for this account; accepting event UNVERIFIED')
			return WebhookVerificationMode.UNVERIFIED

		if not signature or not timestamp:
			raise SignatureVerificationFailed('Missing Zoom signature headers')

		if self._max_skew:
			try:
				request_ts = float(timestamp)
			except ValueError:
				raise SignatureVerificationFailed('Invalid Zoom request timestamp')
			if request_ts > 1e12:
				request_ts /= 1000.0
			if abs(self._clock() - request_ts) > self._max_skew:
				raise SignatureVerificationFailed('Stale Zoom webhook request')

		expected = compute_signature(secret, timestamp, raw_body)
		if not hmac.compare_digest(expected, signature):
			logger.error('Invalid Zoom webhook signature')
			raise SignatureVerificationFailed()
		return WebhookVerificationMode.VERIFIED

	async def _answer_challenge(self, payload: Dict[str, Any], tenant_id: str | None) -> Dict[str, str]:
		plain_token = payload.get('plainToken')
		if not plain_token:
			raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='plainToken is required')

		secret = await self._challenge_secret(tenant_id)
		if not secret:
			logger.error('No webhook secret available for URL validation')
			raise HTTPException(
				status_code=status.HTTP_400_BAD_REQUEST,
				detail='Please save your Webhook Secret Token in Settings before validating',
			)
		logger.info('Answered Zoom URL validation challenge')
		return {'plainToken': plain_token, 'encryptedToken': sign_challenge(secret, plain_token)}

	async def _challenge_secret(self, tenant_id: str | None) -> Optional[str]:
		# The challenge carries no account id: scoped URL first, then the bootstrap secret, then any stored secret.
		if tenant_id:
			credentials = await self._credentials.get(tenant_id)
			if credentials and credentials.webhook_secret:
				return credentials.webhook_secret
		if self._bootstrap_secret:
			return self._bootstrap_secret
		return await self._credentials.first_webhook_secret()

	async def _locate_tenant(self, account_id: str, tenant_id: str | None) -> Optional[Tuple[str, TenantCredentials]]:
		if tenant_id:
			credentials = await self._credentials.get(tenant_id)
			return (tenant_id, credentials) if credentials else None
		return await self._credentials.find_by_account_id(account_id)

	async def _record(
		self,
		body: Dict[str, Any],
		meeting: Dict[str, Any],
		tenant: Tuple[str, TenantCredentials],
		new_status: str,
	) -> None:
		meeting_id = str(meeting.get('id'))
		account_id = tenant[1].account_id
		event_ts = body.get('event_ts')
		logger.info('Meeting event %s for meeting %s account %s', new_status, meeting_id, account_id)

		if await self._is_stale(meeting_id, event_ts):
			logger.warning('Skipping out-of-order %s event for meeting %s (event_ts=%s)', new_status, meeting_id, event_ts)
			return

		now = self._now()
		fields: Dict[str, Any] = {
			'tenantAccountId': account_id,
			'status': new_status,
			'updatedAt': now,
		}
		if event_ts is not None:
			fields['eventTs'] = event_ts
		if meeting.get('host_id'):
			fields['hostId'] = meeting['host_id']

		if new_status == STATUS_STARTED:
			fields['topic'] = meeting.get('topic') or 'Meeting'
			fields['password'] = meeting.get('password') or await self._backfill_password(meeting_id, tenant)
			fields['startedAt'] = now
			fields['endedAt'] = None
		else:
			if meeting.get('topic'):
				fields['topic'] = meeting['topic']
			fields['endedAt'] = now

		try:
			await self._repository.upsert(meeting_id, fields)
		except Exception as exc:
			logger.error('Error saving meeting status for %s: %s', meeting_id, exc)
			raise StoreUnavailable('Failed to record meeting status')

	async def _is_stale(self, meeting_id: str, event_ts: Any) -> bool:
		if not isinstance(event_ts, (int, float)):
			return False
		try:
			existing = await self._repository.get(meeting_id)
		except Exception as exc:
			logger.warning('Could not read meeting status %s before update: %s', meeting_id, exc)
			return False
		return bool(existing and existing.event_ts and event_ts < existing.event_ts)

	async def _backfill_password(self, meeting_id: str, tenant: Tuple[str, TenantCredentials]) -> str:
		"""Webhook payloads often omit the password; ask Zoom for it."""
		tenant_id = tenant[0]
		try:
			access_token = await self._token_broker.get_access_token(tenant_id)
			details = await self._zoom.get_meeting(access_token, meeting_id)
		except HTTPException as exc:
			logger.warning('Password back-fill failed for meeting %s: %s', meeting_id, exc.detail)
			return ''
		return extract_password(details)
