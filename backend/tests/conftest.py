"""
Shared fixtures for meetgate tests.

Provides an in-memory Firestore, a fake Zoom client and a fake storefront
access gate, wired together through ``build_services`` so no network or
Firebase project is needed.
"""
import copy
from collections import defaultdict
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient
from firebase_admin import firestore

from meetgate.core.config import LegacyZoomCredentials, Settings
from meetgate.core.security import NO_ACCESS, AccessCheck
from meetgate.services.container import build_services


# ── In-memory Firestore ────────────────────────────────────


class FakeSnapshot:
	def __init__(self, doc_id, data, reference=None):
		self.id = doc_id
		self.exists = data is not None
		self.reference = reference
		self._data = data

	def to_dict(self):
		return copy.deepcopy(self._data) if self._data is not None else None


def _matches(data, field, op, value):
	current = data.get(field)
	if op == '==':
		return current == value
	if op == '!=':
		return current != value
	if current is None:
		return False
	if op == '>':
		return current > value
	if op == '<':
		return current < value
	raise ValueError(f'unsupported operator {op}')


class FakeQuery:
	def __init__(self, db, name, filters=(), order=None, limit_to=None):
		self._db = db
		self._name = name
		self._filters = tuple(filters)
		self._order = order
		self._limit = limit_to

	@property
	def _docs(self):
		return self._db.data[self._name]

	def where(self, field, op, value):
		return FakeQuery(self._db, self._name, self._filters + ((field, op, value),), self._order, self._limit)

	def order_by(self, field, direction='ASCENDING'):
		return FakeQuery(self._db, self._name, self._filters, (field, direction), self._limit)

	def limit(self, count):
		return FakeQuery(self._db, self._name, self._filters, self._order, count)

	def stream(self):
		self._db.check()
		rows = [
			(doc_id, data) for doc_id, data in self._docs.items()
			if all(_matches(data, f, op, v) for f, op, v in self._filters)
		]
		if self._order:
			field, direction = self._order
			rows.sort(
				key=lambda row: (row[1].get(field) is not None, row[1].get(field)),
				reverse=direction == firestore.Query.DESCENDING,
			)
		if self._limit is not None:
			rows = rows[:self._limit]
		return iter([FakeSnapshot(doc_id, copy.deepcopy(data), FakeDocument(self._db, self._name, doc_id)) for doc_id, data in rows])


class FakeDocument:
	def __init__(self, db, name, doc_id):
		self._db = db
		self._name = name
		self.id = doc_id

	def get(self):
		self._db.check()
		return FakeSnapshot(self.id, copy.deepcopy(self._db.data[self._name].get(self.id)), self)

	def set(self, data, merge=False):
		self._db.check()
		docs = self._db.data[self._name]
		if merge and self.id in docs:
			docs[self.id].update(copy.deepcopy(data))
		else:
			docs[self.id] = copy.deepcopy(data)
		self._db.writes += 1

	def delete(self):
		self._db.check()
		self._db.data[self._name].pop(self.id, None)


class FakeCollection(FakeQuery):
	def document(self, doc_id):
		return FakeDocument(self._db, self._name, doc_id)


class FakeFirestore:
	"""Just enough of ``google.cloud.firestore.Client`` for the services."""

	def __init__(self):
		self.data = defaultdict(dict)
		self.available = True
		self.writes = 0

	def check(self):
		if not self.available:
			raise RuntimeError('firestore unavailable')

	def collection(self, name):
		return FakeCollection(self, name)


# ── Fake Zoom client ───────────────────────────────────────


class FakeResponse:
	def __init__(self, status_code=200, payload=None, text=None):
		self.status_code = status_code
		self._payload = payload
		self.text = text if text is not None else (str(payload) if payload is not None else '')

	def json(self):
		return self._payload


class FakeZoomClient:
	"""Records every call; live listings are keyed by Zoom user id."""

	def __init__(self):
		self.token_response = FakeResponse(200, {'access_token': 'zoom-access-token', 'expires_in': 3600})
		self.meetings = {}
		self.live = defaultdict(list)
		self.users = []
		self.failures = {}
		self.calls = []
		self._next_id = 85012345670

	def _record(self, name, *args):
		self.calls.append((name,) + args)
		failure = self.failures.get(name)
		if failure is not None:
			raise failure

	def count(self, name=None):
		if name is None:
			return len(self.calls)
		return sum(1 for call in self.calls if call[0] == name)

	def add_live(self, meeting, user_id='me'):
		self.meetings[str(meeting['id'])] = meeting
		self.live[user_id].append(meeting)

	async def request_token(self, *, account_id, client_id, client_secret):
		self._record('request_token', account_id, client_id)
		return self.token_response

	async def get_meeting(self, access_token, meeting_id):
		self._record('get_meeting', str(meeting_id))
		meeting = self.meetings.get(str(meeting_id))
		return dict(meeting) if meeting else None

	async def list_live_meetings(self, access_token, user_id='me'):
		self._record('list_live_meetings', user_id)
		return [dict(m) for m in self.live.get(user_id, [])]

	async def list_users(self, access_token, *, page_size=30):
		self._record('list_users')
		return list(self.users)[:page_size]

	async def create_meeting(self, access_token, payload):
		self._record('create_meeting', payload)
		self._next_id += 1
		meeting_id = self._next_id
		meeting = {
			'id': meeting_id,
			'topic': payload['topic'],
			'password': 'pw' + str(meeting_id)[-4:],
			'join_url': f'https://zoom.us/j/{meeting_id}?pwd=hashed',
			'start_url': f'https://zoom.us/s/{meeting_id}',
			'status': 'started',
		}
		self.add_live(meeting)
		return dict(meeting)

	async def end_meeting(self, access_token, meeting_id):
		self._record('end_meeting', str(meeting_id))
		key = str(meeting_id)
		for user_id in list(self.live):
			self.live[user_id] = [m for m in self.live[user_id] if str(m.get('id')) != key]
		meeting = self.meetings.get(key)
		if meeting is None:
			return False
		meeting['status'] = 'ended'
		return True


# ── Fake storefront access gate ────────────────────────────


class FakeAccessGate:
	def __init__(self):
		self.tokens = {}
		self.access = {}

	def verify_user_token(self, headers):
		return self.tokens.get(headers.get('x-whop-user-token') or '')

	async def check_access(self, resource_id, user_id):
		return self.access.get((resource_id, user_id), NO_ACCESS)

	def grant(self, resource_id, user_id, level='customer'):
		self.access[(resource_id, user_id)] = AccessCheck(has_access=True, access_level=level)


class FakeClock:
	def __init__(self, start=1_760_000_000.0):
		self.now = start

	def __call__(self):
		return self.now

	def advance(self, seconds):
		self.now += seconds


# ── Fixtures ───────────────────────────────────────────────


BASE_SETTINGS = Settings(
	cors_allow_origins=['http://localhost:3000'],
	cors_allow_origin_regex=r'https?://localhost(:\d+)?',
	zoom_oauth_url='https://zoom.test/oauth/token',
	zoom_api_base='https://api.zoom.test/v2',
	zoom_http_timeout_seconds=10.0,
	credential_cache_ttl_seconds=300,
	token_refresh_margin_seconds=300,
	recently_ended_window_seconds=120,
	max_account_users_scanned=30,
	webhook_max_skew_seconds=300,
	webhook_bootstrap_secret=None,
	admin_usernames=['platform-owner'],
	legacy_credentials=LegacyZoomCredentials(
		account_id=None,
		client_id=None,
		client_secret=None,
		sdk_key=None,
		sdk_secret=None,
		permanent_meeting_id=None,
		default_meeting_title='Livestream',
	),
	storefront_api_base='https://storefront.test/api/v5',
	storefront_api_key='storefront-key',
	storefront_app_id='app_meetgate',
	storefront_token_public_key=None,
	storefront_token_header='x-whop-user-token',
	storefront_username_header='x-whop-username',
)

FULL_CREDENTIALS = {
	'accountId': 'acct_ABCDEFGH1234',
	'clientId': 'client_ABCDEFGH5678',
	'clientSecret': 'client-secret-value',
	'sdkKey': 'sdkkey_ABCDEFGH9012',
	'sdkSecret': 'sdk-secret-value-0123456789abcdef',
}


@pytest.fixture
def settings():
	return BASE_SETTINGS


@pytest.fixture
def make_settings():
	def _make(**overrides):
		return replace(BASE_SETTINGS, **overrides)
	return _make


@pytest.fixture
def full_credentials():
	return dict(FULL_CREDENTIALS)


@pytest.fixture
def zoom_response():
	return FakeResponse


@pytest.fixture
def db():
	return FakeFirestore()


@pytest.fixture
def zoom():
	return FakeZoomClient()


@pytest.fixture
def gate():
	return FakeAccessGate()


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def build(db, zoom, gate, clock):
	"""Build a service container over the fakes with optional settings."""
	def _build(app_settings=BASE_SETTINGS):
		return build_services(
			app_settings,
			client_factory=lambda: db,
			zoom_client=zoom,
			access_gate=gate,
			clock=clock,
		)
	return _build


@pytest.fixture
def services(build, settings):
	return build(settings)


@pytest.fixture
def seed_tenant(db):
	"""Write a tenant_settings document directly, bypassing the store."""
	def _seed(tenant_id, **fields):
		doc = dict(FULL_CREDENTIALS)
		doc.update(fields)
		doc.setdefault('tenantId', tenant_id)
		db.data['tenant_settings'][tenant_id] = doc
		return doc
	return _seed


@pytest.fixture
def client(services):
	from meetgate.main import create_app

	return TestClient(create_app(services))
