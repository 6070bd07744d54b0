import asyncio
import logging
from dataclasses import dataclass
from typing import Dict

from meetgate.core.cache import TTLCache
from meetgate.core.errors import CredentialsMissing, TokenExchangeFailed
from meetgate.services.credential_store import CredentialStore
from meetgate.services.zoom_client import ZoomClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
	token: str
	expires_at: float


class TokenBroker:
	"""Server-to-Server OAuth tokens per tenant, cached until shortly before expiry."""

	def __init__(
		self,
		credential_store: CredentialStore,
		zoom_client: ZoomClient,
		cache: TTLCache[AccessToken],
		*,
		refresh_margin_seconds: int = 300,
	) -> None:
		self._credentials = credential_store
		self._zoom = zoom_client
		self._cache = cache
		self._refresh_margin = refresh_margin_seconds
		self._inflight: Dict[str, asyncio.Future] = {}

	async def get_access_token(self, tenant_id: str) -> str:
		cached = self._cache.get(tenant_id)
		if cached is not None:
			return cached.token

		# No await between lookup and registration, so one exchange per tenant is in flight.
		pending = self._inflight.get(tenant_id)
		if pending is None:
			pending = asyncio.ensure_future(self._exchange(tenant_id))
			self._inflight[tenant_id] = pending
			pending.add_done_callback(lambda _done, key=tenant_id: self._inflight.pop(key, None))
		token = await asyncio.shield(pending)
		return token.token

	def invalidate(self, tenant_id: str) -> None:
		self._cache.invalidate(tenant_id)

	async def _exchange(self, tenant_id: str) -> AccessToken:
		credentials = await self._credentials.get(tenant_id)
		if credentials is None or not (credentials.account_id and credentials.client_id and credentials.client_secret):
			raise CredentialsMissing()

		resp = await self._zoom.request_token(
			account_id=credentials.account_id,
			client_id=credentials.client_id,
			client_secret=credentials.client_secret,
		)
		if resp.status_code < 200 or resp.status_code >= 300:
			logger.error('Zoom token fetch failed for tenant %s: %s %s', tenant_id, resp.status_code, resp.text)
			raise TokenExchangeFailed(resp.text)

		data = resp.json() or {}
		access_token = data.get('access_token')
		if not access_token:
			raise TokenExchangeFailed('response did not include an access_token')
		expires_in = float(data.get('expires_in') or 0)
		lifetime = max(expires_in - self._refresh_margin, 0.0)
		token = AccessToken(token=access_token, expires_at=self._cache.now() + lifetime)
		self._cache.set(tenant_id, token, ttl=lifetime)
		logger.info('Obtained Zoom token for tenant %s; expires in %ss', tenant_id, int(expires_in))
		return token
