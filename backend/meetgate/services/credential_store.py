"""
Per-tenant Zoom credentials and tenant settings, persisted in Firestore.

Reads go through a short-TTL cache and degrade to "not configured" when the
store is unreachable. Writes merge the incoming fields over the stored record.
"""
import asyncio
import json
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from meetgate.core.cache import TTLCache
from meetgate.core.config import Settings
from meetgate.core.security import firestore_client
from meetgate.services.zoom_client import ZoomClient
from meetgate.utils.masking import SECRET_MASK, mask_identifier, mask_secret

logger = logging.getLogger(__name__)

DEFAULT_MEETING_TITLE = 'Livestream'
DEFAULT_BRAND_COLOR = '#5dc6ae'
NOTIFICATION_TEMPLATE_KEYS = ('startTitle', 'startBody', 'endTitle', 'endBody')


@dataclass(frozen=True)
class TenantCredentials:
	account_id: str = ''
	client_id: str = ''
	client_secret: str = ''
	sdk_key: str = ''
	sdk_secret: str = ''
	fixed_meeting_id: Optional[str] = None
	default_meeting_title: str = DEFAULT_MEETING_TITLE
	brand_color: str = DEFAULT_BRAND_COLOR
	webhook_secret: Optional[str] = None
	notification_templates: Optional[Dict[str, str]] = None
	updated_at: Optional[str] = None

	@property
	def is_configured(self) -> bool:
		return all((self.account_id, self.client_id, self.client_secret, self.sdk_key, self.sdk_secret))


@dataclass(frozen=True)
class TenantSettings:
	tenant_id: str
	credentials: TenantCredentials
	admin_usernames: List[str] = field(default_factory=list)
	created_at: Optional[str] = None
	updated_at: Optional[str] = None


@dataclass(frozen=True)
class ValidationResult:
	valid: bool
	error: Optional[str] = None
	reason: Optional[str] = None


# Firestore document key -> TenantCredentials attribute
_CREDENTIAL_FIELDS = {
	'accountId': 'account_id',
	'clientId': 'client_id',
	'clientSecret': 'client_secret',
	'sdkKey': 'sdk_key',
	'sdkSecret': 'sdk_secret',
	'fixedMeetingId': 'fixed_meeting_id',
	'defaultMeetingTitle': 'default_meeting_title',
	'brandColor': 'brand_color',
	'webhookSecret': 'webhook_secret',
	'notificationTemplates': 'notification_templates',
}


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def _is_empty(value: Any) -> bool:
	if value is None:
		return True
	if isinstance(value, str):
		return not value.strip()
	if isinstance(value, (list, tuple, dict)):
		return len(value) == 0
	return False


def _normalize(key: str, value: Any) -> Any:
	if key == 'fixedMeetingId':
		return re.sub(r'\s', '', str(value))
	if key == 'notificationTemplates':
		return {k: str(value[k]).strip() for k in NOTIFICATION_TEMPLATE_KEYS if not _is_empty(value.get(k))}
	if key == 'adminUsernames':
		return [str(name).strip() for name in value if str(name).strip()]
	if isinstance(value, str):
		return value.strip()
	return value


def credentials_from_document(data: Mapping[str, Any]) -> TenantCredentials:
	kwargs = {attr: data.get(key) for key, attr in _CREDENTIAL_FIELDS.items() if data.get(key) is not None}
	kwargs['updated_at'] = data.get('updatedAt')
	return TenantCredentials(**kwargs)


def settings_from_document(tenant_id: str, data: Mapping[str, Any]) -> TenantSettings:
	return TenantSettings(
		tenant_id=tenant_id,
		credentials=credentials_from_document(data),
		admin_usernames=list(data.get('adminUsernames') or []),
		created_at=data.get('createdAt'),
		updated_at=data.get('updatedAt'),
	)


def settings_to_document(settings: TenantSettings) -> Dict[str, Any]:
	creds = settings.credentials
	doc: Dict[str, Any] = {
		key: getattr(creds, attr) for key, attr in _CREDENTIAL_FIELDS.items()
	}
	doc.update({
		'tenantId': settings.tenant_id,
		'adminUsernames': list(settings.admin_usernames),
		'createdAt': settings.created_at,
		'updatedAt': settings.updated_at,
	})
	return doc


class CredentialStore:

	COLLECTION_NAME = 'tenant_settings'

	def __init__(
		self,
		settings: Settings,
		zoom_client: ZoomClient,
		cache: TTLCache[TenantSettings],
		client_factory: Callable[[], Any] = firestore_client,
	) -> None:
		self._settings = settings
		self._zoom = zoom_client
		self._cache = cache
		self._client_factory = client_factory

	def _collection(self):
		return self._client_factory().collection(self.COLLECTION_NAME)

	# ------------------------------------------------------------------
	# reads
	# ------------------------------------------------------------------

	async def get(self, tenant_id: str) -> Optional[TenantCredentials]:
		cached = self._cache.get(tenant_id)
		if cached is not None:
			return cached.credentials
		try:
			stored = await asyncio.to_thread(self._load_sync, tenant_id)
		except Exception as exc:
			logger.error('Credential store read failed for tenant %s: %s', tenant_id, exc)
			return None
		if stored is not None:
			self._cache.set(tenant_id, stored)
			logger.info('Loaded credentials for tenant %s (account %s)', tenant_id, mask_secret(stored.credentials.account_id))
			return stored.credentials
		return self._legacy_credentials()

	async def get_settings(self, tenant_id: str) -> Optional[TenantSettings]:
		"""Stored tenant settings only; no environment fallback."""
		cached = self._cache.get(tenant_id)
		if cached is not None:
			return cached
		try:
			stored = await asyncio.to_thread(self._load_sync, tenant_id)
		except Exception as exc:
			logger.error('Credential store read failed for tenant %s: %s', tenant_id, exc)
			return None
		if stored is not None:
			self._cache.set(tenant_id, stored)
		return stored

	async def find_by_account_id(self, account_id: str) -> Optional[Tuple[str, TenantCredentials]]:
		if not account_id:
			return None
		try:
			return await asyncio.to_thread(self._find_by_account_sync, account_id)
		except Exception as exc:
			logger.error('Credential lookup by account %s failed: %s', mask_secret(account_id), exc)
			return None

	async def first_webhook_secret(self) -> Optional[str]:
		try:
			return await asyncio.to_thread(self._first_webhook_secret_sync)
		except Exception as exc:
			logger.error('Webhook secret lookup failed: %s', exc)
			return None

	async def is_admin(self, tenant_id: str, username: str) -> bool:
		name = (username or '').strip().lower()
		if not name:
			return False
		stored = await self.get_settings(tenant_id)
		if stored is None:
			return name in self._settings.admin_usernames
		return name in {admin.lower() for admin in stored.admin_usernames}

	def _legacy_credentials(self) -> Optional[TenantCredentials]:
		legacy = self._settings.legacy_credentials
		creds = TenantCredentials(
			account_id=legacy.account_id or '',
			client_id=legacy.client_id or '',
			client_secret=legacy.client_secret or '',
			sdk_key=legacy.sdk_key or '',
			sdk_secret=legacy.sdk_secret or '',
			fixed_meeting_id=legacy.permanent_meeting_id or None,
			default_meeting_title=legacy.default_meeting_title,
			updated_at=_now_iso(),
		)
		if not creds.is_configured:
			return None
		logger.info('Falling back to environment Zoom credentials')
		return creds

	def _load_sync(self, tenant_id: str) -> Optional[TenantSettings]:
		snapshot = self._collection().document(tenant_id).get()
		if not snapshot.exists:
			return None
		return settings_from_document(tenant_id, snapshot.to_dict() or {})

	def _find_by_account_sync(self, account_id: str) -> Optional[Tuple[str, TenantCredentials]]:
		docs = list(self._collection().where('accountId', '==', account_id).limit(1).stream())
		if not docs:
			return None
		return docs[0].id, credentials_from_document(docs[0].to_dict() or {})

	def _first_webhook_secret_sync(self) -> Optional[str]:
		docs = list(self._collection().where('webhookSecret', '>', '').limit(1).stream())
		if not docs:
			return None
		return (docs[0].to_dict() or {}).get('webhookSecret') or None

	# ------------------------------------------------------------------
	# writes
	# ------------------------------------------------------------------

	async def save(self, tenant_id: str, partial: Mapping[str, Any]) -> bool:
		"""Merge non-empty fields of ``partial`` over the stored record."""
		try:
			await asyncio.to_thread(self._save_sync, tenant_id, dict(partial))
		except Exception as exc:
			logger.error('Error saving settings for tenant %s: %s', tenant_id, exc)
			return False
		finally:
			self._cache.invalidate(tenant_id)
		logger.info('Settings saved for tenant %s', tenant_id)
		return True

	async def delete(self, tenant_id: str) -> bool:
		try:
			await asyncio.to_thread(self._delete_sync, tenant_id)
		except Exception as exc:
			logger.error('Error deleting settings for tenant %s: %s', tenant_id, exc)
			return False
		finally:
			self._cache.invalidate(tenant_id)
		logger.info('Settings deleted for tenant %s', tenant_id)
		return True

	def _save_sync(self, tenant_id: str, partial: Dict[str, Any]) -> None:
		current = self._load_sync(tenant_id)
		now = _now_iso()
		if current is None:
			current = TenantSettings(tenant_id=tenant_id, credentials=TenantCredentials(), created_at=now)
		merged = self.merge(current, partial, now=now)
		self._collection().document(tenant_id).set(settings_to_document(merged), merge=True)

	def _delete_sync(self, tenant_id: str) -> None:
		self._collection().document(tenant_id).delete()

	@staticmethod
	def merge(current: TenantSettings, partial: Mapping[str, Any], *, now: str | None = None) -> TenantSettings:
		"""Return ``current`` with every present, non-empty field of ``partial`` applied."""
		stamp = now or _now_iso()
		updates: Dict[str, Any] = {}
		for key, attr in _CREDENTIAL_FIELDS.items():
			if key not in partial or _is_empty(partial[key]):
				continue
			value = _normalize(key, partial[key])
			if _is_empty(value):
				continue
			updates[attr] = value
		credentials = replace(current.credentials, updated_at=stamp, **updates)

		admins = current.admin_usernames
		if not _is_empty(partial.get('adminUsernames')):
			admins = _normalize('adminUsernames', partial['adminUsernames']) or admins

		return replace(
			current,
			credentials=credentials,
			admin_usernames=list(admins),
			created_at=current.created_at or stamp,
			updated_at=stamp,
		)

	# ------------------------------------------------------------------
	# validation and presentation
	# ------------------------------------------------------------------

	async def validate(self, credentials: TenantCredentials) -> ValidationResult:
		"""Confirm the account/client triple with Zoom without caching the token."""
		account_id = (credentials.account_id or '').strip()
		client_id = (credentials.client_id or '').strip()
		client_secret = (credentials.client_secret or '').strip()
		if not account_id or not client_id or not client_secret:
			return ValidationResult(
				valid=False,
				reason='malformed',
				error='Missing required credentials (Account ID, Client ID, or Client Secret)',
			)

		logger.info('Validating Zoom credentials for account %s client %s', mask_secret(account_id), mask_secret(client_id))
		try:
			resp = await self._zoom.request_token(account_id=account_id, client_id=client_id, client_secret=client_secret)
		except Exception as exc:
			logger.error('Zoom validation error: %s', getattr(exc, 'detail', exc))
			return ValidationResult(valid=False, reason='rejected', error=str(getattr(exc, 'detail', exc)))

		if 200 <= resp.status_code < 300:
			logger.info('Zoom credentials validated for account %s', mask_secret(account_id))
			return ValidationResult(valid=True)

		logger.warning('Zoom validation failed: %s %s', resp.status_code, resp.text)
		try:
			error_json = json.loads(resp.text)
		except ValueError:
			return ValidationResult(valid=False, reason='rejected', error=f'Zoom API error ({resp.status_code}): {resp.text}')

		error_code = error_json.get('error') if isinstance(error_json, dict) else None
		if error_code == 'invalid_request':
			return ValidationResult(
				valid=False,
				reason='malformed',
				error='Invalid credentials format. Make sure you are using Server-to-Server OAuth credentials from Zoom Marketplace.',
			)
		if error_code == 'invalid_client':
			return ValidationResult(
				valid=False,
				reason='invalid_client',
				error='Invalid Client ID or Client Secret. Please verify your credentials.',
			)
		detail = (error_json.get('reason') or error_code) if isinstance(error_json, dict) else None
		return ValidationResult(valid=False, reason='rejected', error=f'Zoom API error: {detail or resp.text}')

	@staticmethod
	def masked_view(credentials: TenantCredentials) -> Dict[str, Any]:
		return {
			'accountId': mask_identifier(credentials.account_id),
			'clientId': mask_identifier(credentials.client_id),
			'clientSecret': SECRET_MASK if credentials.client_secret else '',
			'sdkKey': mask_identifier(credentials.sdk_key),
			'sdkSecret': SECRET_MASK if credentials.sdk_secret else '',
			'webhookSecret': SECRET_MASK if credentials.webhook_secret else '',
			'fixedMeetingId': credentials.fixed_meeting_id or '',
			'defaultMeetingTitle': credentials.default_meeting_title or DEFAULT_MEETING_TITLE,
			'brandColor': credentials.brand_color or DEFAULT_BRAND_COLOR,
			'notificationTemplates': credentials.notification_templates,
			'updatedAt': credentials.updated_at,
		}


def credentials_with(credentials: TenantCredentials, partial: Mapping[str, Any]) -> TenantCredentials:
	"""Preview of the merged credentials, used to validate before saving."""
	preview = TenantSettings(tenant_id='', credentials=credentials)
	return CredentialStore.merge(preview, partial).credentials

