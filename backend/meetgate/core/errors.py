from fastapi import HTTPException, status


class CredentialsMissing(HTTPException):
	def __init__(self, detail: str = 'Zoom credentials not configured. Please set up your Zoom integration in settings.') -> None:
		super().__init__(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=detail)


class CredentialsInvalid(HTTPException):
	"""Provider handshake rejected the account/client triple.

	``reason`` is one of ``malformed``, ``invalid_client`` or ``rejected``.
	"""

	def __init__(self, reason: str, detail: str) -> None:
		super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
		self.reason = reason


class TokenExchangeFailed(HTTPException):
	def __init__(self, provider_error: str) -> None:
		super().__init__(
			status_code=status.HTTP_502_BAD_GATEWAY,
			detail=f'Failed to get Zoom access token: {provider_error}',
		)
		self.provider_error = provider_error


class ProviderRequestFailed(HTTPException):
	def __init__(self, action: str, provider_error: str, provider_status: int | None = None) -> None:
		super().__init__(
			status_code=status.HTTP_502_BAD_GATEWAY,
			detail=f'Failed to {action}: {provider_error}',
		)
		self.action = action
		self.provider_error = provider_error
		self.provider_status = provider_status


class ProviderTimeout(ProviderRequestFailed):
	def __init__(self, action: str, timeout: float) -> None:
		super().__init__(action, f'Zoom did not respond within {timeout:g}s')
		self.status_code = status.HTTP_504_GATEWAY_TIMEOUT


class SdkNotConfigured(HTTPException):
	def __init__(self) -> None:
		super().__init__(
			status_code=status.HTTP_412_PRECONDITION_FAILED,
			detail='Zoom SDK credentials not configured. Please set up your Zoom integration in settings.',
		)


class SignatureVerificationFailed(HTTPException):
	def __init__(self, detail: str = 'Invalid signature') -> None:
		super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class StoreUnavailable(HTTPException):
	def __init__(self, detail: str = 'Settings store is unavailable') -> None:
		super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
