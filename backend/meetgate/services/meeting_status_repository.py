import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from firebase_admin import firestore

from meetgate.core.security import firestore_client

logger = logging.getLogger(__name__)

STATUS_STARTED = 'started'
STATUS_ENDED = 'ended'


def _as_utc(value: Any) -> Optional[datetime]:
	if value is None:
		return None
	if isinstance(value, datetime):
		if value.tzinfo is None:
			value = value.replace(tzinfo=timezone.utc)
		return value.astimezone(timezone.utc)
	if isinstance(value, str):
		try:
			return _as_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
		except ValueError:
			logger.warning('Unparseable timestamp in meeting status record: %s', value)
	return None


@dataclass
class MeetingStatusRecord:
	"""One row per Zoom meeting id, kept current by webhook events."""
	meeting_id: str
	tenant_account_id: str
	status: str
	topic: str = 'Meeting'
	host_id: Optional[str] = None
	password: Optional[str] = None
	started_at: Optional[datetime] = None
	ended_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	event_ts: Optional[int] = None

	@classmethod
	def from_dict(cls, meeting_id: str, data: Dict[str, Any]) -> 'MeetingStatusRecord':
		return cls(
			meeting_id=str(data.get('meetingId') or meeting_id),
			tenant_account_id=data.get('tenantAccountId') or '',
			status=data.get('status') or STATUS_ENDED,
			topic=data.get('topic') or 'Meeting',
			host_id=data.get('hostId'),
			password=data.get('password'),
			started_at=_as_utc(data.get('startedAt')),
			ended_at=_as_utc(data.get('endedAt')),
			updated_at=_as_utc(data.get('updatedAt')),
			event_ts=data.get('eventTs'),
		)

	def to_dict(self) -> Dict[str, Any]:
		return {
			'meetingId': self.meeting_id,
			'tenantAccountId': self.tenant_account_id,
			'status': self.status,
			'topic': self.topic,
			'hostId': self.host_id,
			'password': self.password,
			'startedAt': self.started_at,
			'endedAt': self.ended_at,
			'updatedAt': self.updated_at,
			'eventTs': self.event_ts,
		}


class MeetingStatusRepository:
	"""Firestore accessor for the ``meeting_status`` collection."""

	COLLECTION_NAME = 'meeting_status'

	def __init__(self, client_factory: Callable[[], Any] = firestore_client) -> None:
		self._client_factory = client_factory

	def _collection(self):
		return self._client_factory().collection(self.COLLECTION_NAME)

	async def get(self, meeting_id: str) -> Optional[MeetingStatusRecord]:
		return await asyncio.to_thread(self._get_sync, str(meeting_id))

	async def upsert(self, meeting_id: str, fields: Dict[str, Any]) -> None:
		"""Write ``fields`` onto the meeting's document, creating it if needed."""
		await asyncio.to_thread(self._upsert_sync, str(meeting_id), fields)

	async def find_started(self, meeting_id: str) -> Optional[MeetingStatusRecord]:
		record = await self.get(meeting_id)
		if record is None or record.status != STATUS_STARTED:
			return None
		return record

	async def latest_started_for_account(self, account_id: str) -> Optional[MeetingStatusRecord]:
		return await asyncio.to_thread(self._latest_sync, account_id, 'startedAt', STATUS_STARTED)

	async def latest_for_account(self, account_id: str) -> Optional[MeetingStatusRecord]:
		return await asyncio.to_thread(self._latest_sync, account_id, 'updatedAt', None)

	def _get_sync(self, meeting_id: str) -> Optional[MeetingStatusRecord]:
		snapshot = self._collection().document(meeting_id).get()
		if not snapshot.exists:
			return None
		return MeetingStatusRecord.from_dict(meeting_id, snapshot.to_dict() or {})

	def _upsert_sync(self, meeting_id: str, fields: Dict[str, Any]) -> None:
		payload = dict(fields)
		payload['meetingId'] = meeting_id
		self._collection().document(meeting_id).set(payload, merge=True)
		logger.info('Meeting status %s -> %s', meeting_id, payload.get('status'))

	def _latest_sync(self, account_id: str, order_field: str, status: str | None) -> Optional[MeetingStatusRecord]:
		if not account_id:
			return None
		query = self._collection().where('tenantAccountId', '==', account_id)
		if status:
			query = query.where('status', '==', status)
		docs = list(query.order_by(order_field, direction=firestore.Query.DESCENDING).limit(1).stream())
		if not docs:
			return None
		return MeetingStatusRecord.from_dict(docs[0].id, docs[0].to_dict() or {})
