import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Mapping

import firebase_admin
import jwt
import requests
from firebase_admin import credentials, firestore

from meetgate.core.config import Settings

logger = logging.getLogger(__name__)

_firebase_app = None


def ensure_firebase_initialized():
	"""Ensure Firebase Admin app is initialized before any Firestore call."""
	global _firebase_app
	if _firebase_app is None:
		initialize_firebase()
	return _firebase_app


def initialize_firebase():
	"""Initialize Firebase Admin SDK once at app startup."""
	global _firebase_app

	if _firebase_app is not None:
		return _firebase_app

	service_account_path = os.getenv('FIREBASE_SERVICE_ACCOUNT_PATH')

	if not service_account_path:
		raise RuntimeError(
			'FIREBASE_SERVICE_ACCOUNT_PATH environment variable not set. '
			'Point to your Firebase service account JSON file.'
		)

	if not os.path.exists(service_account_path):
		raise RuntimeError(
			f'Firebase service account file not found at: {service_account_path}'
		)

	cred = credentials.Certificate(service_account_path)
	_firebase_app = firebase_admin.initialize_app(cred)
	logger.info('Firebase Admin SDK initialized')
	return _firebase_app


def firestore_client():
	ensure_firebase_initialized()
	return firestore.client()


@dataclass(frozen=True)
class AccessCheck:
	has_access: bool
	access_level: str

	@property
	def is_admin(self) -> bool:
		return self.access_level == 'admin'


NO_ACCESS = AccessCheck(has_access=False, access_level='no_access')


class StorefrontAccessGate:
	"""Identity and entitlement checks against the storefront platform."""

	TOKEN_ALGORITHMS = ['ES256']
	TOKEN_ISSUER = 'urn:whopcom:exp-proxy'

	def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
		self._settings = settings
		self._session = session or requests.Session()

	def verify_user_token(self, headers: Mapping[str, str]) -> str | None:
		"""Return the user id carried by the storefront user token, or None."""
		token = (headers.get(self._settings.storefront_token_header) or '').strip()
		if not token:
			return None
		public_key = self._settings.storefront_token_public_key
		if not public_key:
			logger.warning('Storefront token public key is not configured; rejecting user token')
			return None
		options = {'require': ['sub']}
		try:
			claims = jwt.decode(
				token,
				public_key.replace('\\n', '\n'),
				algorithms=self.TOKEN_ALGORITHMS,
				audience=self._settings.storefront_app_id,
				issuer=self.TOKEN_ISSUER,
				options=options,
			)
		except jwt.ExpiredSignatureError:
			logger.warning('Storefront user token has expired')
			return None
		except jwt.InvalidTokenError as err:
			logger.warning('Storefront user token rejected: %s', err)
			return None
		return claims.get('sub')

	async def check_access(self, resource_id: str, user_id: str) -> AccessCheck:
		return await asyncio.to_thread(self._check_access_sync, resource_id, user_id)

	def _check_access_sync(self, resource_id: str, user_id: str) -> AccessCheck:
		if not self._settings.storefront_api_key:
			logger.warning('STOREFRONT_API_KEY is not configured; treating %s as no access', user_id)
			return NO_ACCESS
		url = f'{self._settings.storefront_api_base}/users/{user_id}/access/{resource_id}'
		headers = {'Authorization': f'Bearer {self._settings.storefront_api_key}'}
		try:
			resp = self._session.get(url, headers=headers, timeout=self._settings.zoom_http_timeout_seconds)
		except requests.RequestException as err:
			logger.error('Storefront access check failed for user=%s resource=%s: %s', user_id, resource_id, err)
			return NO_ACCESS
		if resp.status_code != 200:
			logger.warning('Storefront access check returned %s for user=%s resource=%s', resp.status_code, user_id, resource_id)
			return NO_ACCESS
		data = resp.json() or {}
		return AccessCheck(
			has_access=bool(data.get('has_access')),
			access_level=data.get('access_level') or 'no_access',
		)
