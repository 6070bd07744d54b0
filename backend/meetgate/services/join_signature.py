import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable

import jwt
from fastapi import HTTPException, status

from meetgate.core.errors import SdkNotConfigured
from meetgate.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinToken:
	token: str
	sdk_key: str


class JoinSignatureService:
	"""Meeting SDK join signatures, signed with the tenant's SDK secret."""

	ALGORITHM = 'HS256'
	TOKEN_TTL_SECONDS = 60 * 60 * 2
	CLOCK_SKEW_SECONDS = 30

	def __init__(self, credential_store: CredentialStore, clock: Callable[[], float] = time.time) -> None:
		self._credentials = credential_store
		self._clock = clock

	@staticmethod
	def normalize_meeting_number(meeting_number: str) -> str:
		return re.sub(r'[\s-]', '', str(meeting_number or ''))

	async def generate_join_token(self, tenant_id: str, meeting_number: str, role: int) -> JoinToken:
		meeting_id = self.normalize_meeting_number(meeting_number)
		if not meeting_id:
			raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='meetingNumber is required')

		if isinstance(role, bool) or role not in (0, 1):
			raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Role must be 0 (attendee) or 1 (host)')

		credentials = await self._credentials.get(tenant_id)
		if credentials is None or not credentials.sdk_key or not credentials.sdk_secret:
			raise SdkNotConfigured()

		now = int(self._clock())
		issued_at = now - self.CLOCK_SKEW_SECONDS
		expires_at = now + self.TOKEN_TTL_SECONDS

		payload: dict[str, Any] = {
			'appKey': credentials.sdk_key,
			'sdkKey': credentials.sdk_key,
			'mn': meeting_id,
			'role': role,
			'iat': issued_at,
			'exp': expires_at,
			'tokenExp': expires_at,
		}

		logger.info('Generating join signature for tenant=%s meeting=%s role=%s exp=%s', tenant_id, meeting_id, role, expires_at)
		token = jwt.encode(payload, credentials.sdk_secret, algorithm=self.ALGORITHM)
		return JoinToken(token=token, sdk_key=credentials.sdk_key)
