import asyncio
import base64
import logging
from typing import Any, Dict, List, Optional

import requests

from meetgate.core.config import Settings
from meetgate.core.errors import ProviderRequestFailed, ProviderTimeout

logger = logging.getLogger(__name__)


class ZoomClient:
	"""Thin wrapper over the Zoom REST API. One attempt per call, bounded timeout."""

	def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
		self._oauth_url = settings.zoom_oauth_url
		self._api_base = settings.zoom_api_base
		self._timeout = settings.zoom_http_timeout_seconds
		self._session = session or requests.Session()

	@staticmethod
	def _basic_auth_header(client_id: str, client_secret: str) -> str:
		creds = f'{client_id}:{client_secret}'.encode('utf-8')
		return 'Basic ' + base64.b64encode(creds).decode('utf-8')

	@staticmethod
	def _bearer(access_token: str) -> Dict[str, str]:
		return {
			'Authorization': f'Bearer {access_token}',
			'Content-Type': 'application/json',
		}

	async def _send(self, action: str, method: str, url: str, **kwargs) -> requests.Response:
		try:
			return await asyncio.to_thread(self._session.request, method, url, timeout=self._timeout, **kwargs)
		except requests.Timeout:
			logger.error('Zoom call timed out after %ss: %s %s', self._timeout, method, url)
			raise ProviderTimeout(action, self._timeout)
		except requests.RequestException as err:
			logger.error('Zoom call failed: %s %s: %s', method, url, err)
			raise ProviderRequestFailed(action, str(err))

	@staticmethod
	def _raise_for_status(action: str, resp: requests.Response) -> None:
		if resp.status_code < 200 or resp.status_code >= 300:
			logger.error('Zoom %s failed: %s %s', action, resp.status_code, resp.text)
			raise ProviderRequestFailed(action, resp.text, resp.status_code)

	async def request_token(self, *, account_id: str, client_id: str, client_secret: str) -> requests.Response:
		"""Raw account-credentials exchange; callers interpret the response."""
		headers = {
			'Authorization': self._basic_auth_header(client_id, client_secret),
			'Content-Type': 'application/x-www-form-urlencoded',
		}
		data = {
			'grant_type': 'account_credentials',
			'account_id': account_id,
		}
		return await self._send('exchange Zoom credentials', 'POST', self._oauth_url, headers=headers, data=data)

	async def get_meeting(self, access_token: str, meeting_id: str) -> Optional[Dict[str, Any]]:
		action = 'fetch Zoom meeting'
		resp = await self._send(action, 'GET', f'{self._api_base}/meetings/{meeting_id}', headers=self._bearer(access_token))
		if resp.status_code == 404:
			return None
		self._raise_for_status(action, resp)
		return resp.json() or {}

	async def list_live_meetings(self, access_token: str, user_id: str = 'me') -> List[Dict[str, Any]]:
		action = 'list live Zoom meetings'
		resp = await self._send(
			action,
			'GET',
			f'{self._api_base}/users/{user_id}/meetings',
			headers=self._bearer(access_token),
			params={'type': 'live'},
		)
		self._raise_for_status(action, resp)
		return (resp.json() or {}).get('meetings') or []

	async def list_users(self, access_token: str, *, page_size: int = 30) -> List[Dict[str, Any]]:
		action = 'list Zoom users'
		resp = await self._send(
			action,
			'GET',
			f'{self._api_base}/users',
			headers=self._bearer(access_token),
			params={'status': 'active', 'page_size': page_size},
		)
		self._raise_for_status(action, resp)
		return (resp.json() or {}).get('users') or []

	async def create_meeting(self, access_token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
		action = 'create Zoom meeting'
		resp = await self._send(action, 'POST', f'{self._api_base}/users/me/meetings', headers=self._bearer(access_token), json=payload)
		self._raise_for_status(action, resp)
		return resp.json() or {}

	async def end_meeting(self, access_token: str, meeting_id: str) -> bool:
		"""End a meeting. Returns False when Zoom no longer knows the meeting."""
		action = 'end Zoom meeting'
		resp = await self._send(
			action,
			'PUT',
			f'{self._api_base}/meetings/{meeting_id}/status',
			headers=self._bearer(access_token),
			json={'action': 'end'},
		)
		if resp.status_code == 404:
			return False
		self._raise_for_status(action, resp)
		return True
