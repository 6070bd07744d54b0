"""End-to-end tests of the REST surface through FastAPI's TestClient."""
import hashlib
import hmac
import json

import pytest

from meetgate.services.webhook_ingest import compute_signature

ADMIN = {'x-whop-user-token': 'tok-admin', 'x-whop-username': 'storeowner'}
VIEWER = {'x-whop-user-token': 'tok-viewer', 'x-whop-username': 'fan'}
STRANGER = {'x-whop-user-token': 'tok-stranger', 'x-whop-username': 'nobody'}


@pytest.fixture(autouse=True)
def users(gate):
	gate.tokens.update({'tok-admin': 'user_admin', 'tok-viewer': 'user_viewer', 'tok-stranger': 'user_stranger'})
	gate.grant('biz_1', 'user_admin', 'admin')
	gate.grant('biz_1', 'user_viewer', 'customer')
	return gate


class TestHealth:
	def test_health(self, client):
		assert client.get('/health').json() == {'status': 'healthy'}

	def test_root(self, client):
		assert client.get('/').json()['health'] == '/health'


class TestEndToEnd:
	def test_configure_create_and_watch(self, client, full_credentials, zoom):
		resp = client.get('/settings/biz_1', headers=ADMIN)
		assert resp.status_code == 200
		assert resp.json()['configured'] is False
		assert resp.json()['credentials'] is None

		resp = client.post('/settings/biz_1', headers=ADMIN, json=full_credentials)
		assert resp.status_code == 200
		assert resp.json()['success'] is True
		assert resp.json()['configured'] is True

		resp = client.get('/settings/biz_1', headers=ADMIN)
		body = resp.json()
		assert body['configured'] is True
		assert body['credentials']['accountId'] == 'acct••••1234'
		assert body['credentials']['clientSecret'] == '••••••••••••'
		assert full_credentials['clientSecret'] not in resp.text
		assert full_credentials['sdkSecret'] not in resp.text

		resp = client.post('/meetings/biz_1', headers=ADMIN, json={})
		assert resp.status_code == 201
		meeting = resp.json()['meeting']
		assert meeting['meetingNumber'] == meeting['id']

		resp = client.get('/meetings/biz_1/live', headers=VIEWER)
		assert resp.status_code == 200
		live = resp.json()
		assert live['live'] is True
		assert live['source'] == 'provider'
		assert live['meeting']['meetingNumber'] == meeting['id']
		assert live['meeting']['password'] == meeting['password']
		assert zoom.count('request_token') == 2  # one validation handshake, one cached token


class TestAuthorization:
	def test_missing_user_token(self, client):
		assert client.get('/settings/biz_1').status_code == 401

	def test_viewer_cannot_manage_settings(self, client):
		assert client.get('/settings/biz_1', headers=VIEWER).status_code == 403
		assert client.post('/meetings/biz_1', headers=VIEWER).status_code == 403

	def test_stranger_cannot_see_live_status(self, client):
		assert client.get('/meetings/biz_1/live', headers=STRANGER).status_code == 403

	def test_tenant_admin_list_grants_admin(self, client, seed_tenant):
		seed_tenant('biz_2', adminUsernames=['Fan'])

		assert client.get('/settings/biz_2', headers=VIEWER).status_code == 200


class TestSettingsEndpoints:
	def test_invalid_credentials_are_not_saved(self, client, full_credentials, zoom, zoom_response, db):
		body = {'reason': 'Invalid client_id or client_secret', 'error': 'invalid_client'}
		zoom.token_response = zoom_response(401, body, json.dumps(body))

		resp = client.post('/settings/biz_1', headers=ADMIN, json=full_credentials)

		assert resp.status_code == 400
		assert 'Invalid Client ID or Client Secret' in resp.json()['detail']
		assert 'biz_1' not in db.data['tenant_settings']

	def test_skip_validation(self, client, zoom, db):
		resp = client.post('/settings/biz_1', headers=ADMIN, json={'brandColor': '#123456', 'skipValidation': True})

		assert resp.status_code == 200
		assert resp.json()['configured'] is False
		assert db.data['tenant_settings']['biz_1']['brandColor'] == '#123456'
		assert zoom.count() == 0

	def test_partial_update_validates_merged_record(self, client, seed_tenant, zoom):
		seed_tenant('biz_1')

		resp = client.post('/settings/biz_1', headers=ADMIN, json={'defaultMeetingTitle': 'Office Hours'})

		assert resp.status_code == 200
		assert zoom.calls[0] == ('request_token', 'acct_ABCDEFGH1234', 'client_ABCDEFGH5678')

	def test_store_outage_on_save(self, client, full_credentials, db):
		db.available = False

		resp = client.post('/settings/biz_1', headers=ADMIN, json=full_credentials)

		assert resp.status_code == 503

	def test_delete_offboards_tenant(self, client, seed_tenant):
		seed_tenant('biz_1')

		assert client.delete('/settings/biz_1', headers=ADMIN).json() == {'success': True}
		assert client.get('/settings/biz_1', headers=ADMIN).json()['configured'] is False


class TestMeetingEndpoints:
	def test_create_requires_credentials(self, client):
		resp = client.post('/meetings/biz_1', headers=ADMIN)

		assert resp.status_code == 412

	def test_create_with_title_and_end(self, client, seed_tenant, zoom):
		seed_tenant('biz_1')

		created = client.post('/meetings/biz_1', headers=ADMIN, json={'title': 'Launch'}).json()['meeting']
		assert created['title'] == 'Launch'

		resp = client.post('/meetings/biz_1/end', headers=ADMIN, json={'meetingId': created['id']})
		assert resp.json() == {'success': True, 'meetingId': created['id']}
		assert zoom.live['me'] == []

	def test_not_live(self, client, seed_tenant):
		seed_tenant('biz_1')

		assert client.get('/meetings/biz_1/live', headers=VIEWER).json() == {'live': False, 'source': None, 'meeting': None}

	def test_partial_settings_show_not_live(self, client, seed_tenant):
		seed_tenant('biz_1', brandColor='#000000', clientSecret='', sdkSecret='')

		resp = client.get('/meetings/biz_1/live', headers=VIEWER)

		assert resp.status_code == 200
		assert resp.json()['live'] is False

	def test_status_and_diagnostics(self, client, seed_tenant, zoom):
		seed_tenant('biz_1')
		zoom.meetings['85000000001'] = {'id': 85000000001, 'status': 'started'}

		status = client.get('/meetings/biz_1/status/85000000001', headers=ADMIN).json()
		assert status == {'meetingId': '85000000001', 'status': 'started'}

		report = client.get('/meetings/biz_1/diagnostics', headers=ADMIN).json()
		assert report['hasCredentials'] is True


class TestJoinTokenEndpoint:
	def test_viewer_gets_attendee_token(self, client, seed_tenant):
		seed_tenant('biz_1')

		resp = client.post('/join-token/biz_1', headers=VIEWER, json={'meetingNumber': 85000000001, 'role': 0})

		assert resp.status_code == 200
		assert resp.json()['sdkKey'] == 'sdkkey_ABCDEFGH9012'
		assert resp.json()['token'].count('.') == 2

	def test_host_role_requires_admin(self, client, seed_tenant):
		seed_tenant('biz_1')

		assert client.post('/join-token/biz_1', headers=VIEWER, json={'meetingNumber': '1', 'role': 1}).status_code == 403
		assert client.post('/join-token/biz_1', headers=ADMIN, json={'meetingNumber': '1', 'role': 1}).status_code == 200

	def test_unconfigured_sdk(self, client):
		resp = client.post('/join-token/biz_1', headers=VIEWER, json={'meetingNumber': '1', 'role': 0})

		assert resp.status_code == 412


class TestWebhookEndpoints:
	def test_liveness(self, client):
		resp = client.get('/webhook')

		assert resp.status_code == 200
		assert resp.json()['status'] == 'ok'

	def test_challenge_on_tenant_url(self, client, seed_tenant):
		seed_tenant('biz_1', webhookSecret='whsec')
		body = {'event': 'endpoint.url_validation', 'payload': {'plainToken': 'abc'}}

		resp = client.post('/webhook/biz_1', json=body)

		assert resp.json() == {
			'plainToken': 'abc',
			'encryptedToken': hmac.new(b'whsec', b'abc', hashlib.sha256).hexdigest(),
		}

	def test_signed_delivery_updates_live_status(self, client, seed_tenant, clock, zoom):
		seed_tenant('biz_1', webhookSecret='whsec')
		raw = json.dumps({
			'event': 'meeting.started',
			'event_ts': 1760000000000,
			'payload': {'account_id': 'acct_ABCDEFGH1234', 'object': {'id': 85000000001, 'topic': 'Live', 'password': 'pw'}},
		}).encode('utf-8')
		timestamp = str(int(clock.now))
		headers = {
			'content-type': 'application/json',
			'x-zm-request-timestamp': timestamp,
			'x-zm-signature': compute_signature('whsec', timestamp, raw),
		}

		resp = client.post('/webhook', content=raw, headers=headers)
		assert resp.json() == {'received': True, 'verification': 'verified'}

		live = client.get('/meetings/biz_1/live', headers=VIEWER).json()
		assert live['source'] == 'database'
		assert live['meeting'] == {'meetingNumber': '85000000001', 'password': 'pw', 'title': 'Live'}
		assert zoom.count() == 0

	def test_bad_signature(self, client, seed_tenant):
		seed_tenant('biz_1', webhookSecret='whsec')
		raw = json.dumps({'event': 'meeting.started', 'payload': {'account_id': 'acct_ABCDEFGH1234', 'object': {'id': 1}}}).encode('utf-8')

		resp = client.post('/webhook', content=raw, headers={'x-zm-signature': 'v0=deadbeef', 'x-zm-request-timestamp': '1760000000'})

		assert resp.status_code == 401

	def test_unknown_tenant_url_is_rejected(self, client, seed_tenant, db):
		seed_tenant('biz_1', webhookSecret='whsec')
		raw = json.dumps({'event': 'meeting.started', 'payload': {'account_id': 'acct_ABCDEFGH1234', 'object': {'id': 1}}}).encode('utf-8')

		resp = client.post('/webhook/biz_unknown', content=raw, headers={'content-type': 'application/json'})

		assert resp.status_code == 401
		assert db.data['meeting_status'] == {}
