import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List


def _parse_csv(value: str | None) -> List[str]:
	if not value:
		return []
	return [item.strip().rstrip('/') for item in value.split(',') if item.strip()]


def _env_int(name: str, default: int) -> int:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return int(raw)


def _env_float(name: str, default: float) -> float:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return float(raw)


@dataclass(frozen=True)
class LegacyZoomCredentials:
	"""Single-tenant credentials read from the process environment."""
	account_id: str | None
	client_id: str | None
	client_secret: str | None
	sdk_key: str | None
	sdk_secret: str | None
	permanent_meeting_id: str | None
	default_meeting_title: str


@dataclass(frozen=True)
class Settings:
	cors_allow_origins: List[str]
	cors_allow_origin_regex: str

	zoom_oauth_url: str
	zoom_api_base: str
	zoom_http_timeout_seconds: float

	credential_cache_ttl_seconds: int
	token_refresh_margin_seconds: int
	recently_ended_window_seconds: int
	max_account_users_scanned: int
	webhook_max_skew_seconds: int
	webhook_bootstrap_secret: str | None

	admin_usernames: List[str]
	legacy_credentials: LegacyZoomCredentials

	storefront_api_base: str
	storefront_api_key: str | None
	storefront_app_id: str | None
	storefront_token_public_key: str | None
	storefront_token_header: str
	storefront_username_header: str


@lru_cache
def get_settings() -> Settings:
	default_origins = [
		'http://localhost:5173',
		'http://localhost:3000',
		'http://127.0.0.1:5173',
		'http://127.0.0.1:3000',
	]
	additional_origins = _parse_csv(os.getenv('CORS_ALLOW_ORIGINS'))
	all_origins: list[str] = []
	for origin in [*default_origins, *additional_origins]:
		if not origin:
			continue
		clean = origin.rstrip('/')
		if clean not in all_origins:
			all_origins.append(clean)

	cors_regex = os.getenv('CORS_ALLOW_ORIGIN_REGEX', r'https?://(localhost|127\.0\.0\.1)(:\d+)?')

	legacy = LegacyZoomCredentials(
		account_id=os.getenv('ZOOM_ACCOUNT_ID'),
		client_id=os.getenv('ZOOM_CLIENT_ID'),
		client_secret=os.getenv('ZOOM_CLIENT_SECRET'),
		sdk_key=os.getenv('ZOOM_SDK_KEY'),
		sdk_secret=os.getenv('ZOOM_SDK_SECRET'),
		permanent_meeting_id=os.getenv('PERMANENT_MEETING_ID'),
		default_meeting_title=os.getenv('DEFAULT_MEETING_TITLE', 'Livestream'),
	)

	return Settings(
		cors_allow_origins=all_origins,
		cors_allow_origin_regex=cors_regex,
		zoom_oauth_url=os.getenv('ZOOM_OAUTH_URL', 'https://zoom.us/oauth/token'),
		zoom_api_base=os.getenv('ZOOM_API_BASE', 'https://api.zoom.us/v2').rstrip('/'),
		zoom_http_timeout_seconds=_env_float('ZOOM_HTTP_TIMEOUT_SECONDS', 10.0),
		credential_cache_ttl_seconds=_env_int('CREDENTIAL_CACHE_TTL_SECONDS', 300),
		token_refresh_margin_seconds=_env_int('TOKEN_REFRESH_MARGIN_SECONDS', 300),
		recently_ended_window_seconds=_env_int('RECENTLY_ENDED_WINDOW_SECONDS', 120),
		max_account_users_scanned=_env_int('MAX_ACCOUNT_USERS_SCANNED', 30),
		webhook_max_skew_seconds=_env_int('WEBHOOK_MAX_SKEW_SECONDS', 300),
		webhook_bootstrap_secret=os.getenv('ZOOM_WEBHOOK_BOOTSTRAP_SECRET') or None,
		admin_usernames=[name.lower() for name in _parse_csv(os.getenv('ADMIN_USERNAMES'))],
		legacy_credentials=legacy,
		storefront_api_base=os.getenv('STOREFRONT_API_BASE', 'https://api.whop.com/api/v5').rstrip('/'),
		storefront_api_key=os.getenv('STOREFRONT_API_KEY') or None,
		storefront_app_id=os.getenv('STOREFRONT_APP_ID') or None,
		storefront_token_public_key=os.getenv('STOREFRONT_TOKEN_PUBLIC_KEY') or None,
		storefront_token_header=os.getenv('STOREFRONT_TOKEN_HEADER', 'x-whop-user-token'),
		storefront_username_header=os.getenv('STOREFRONT_USERNAME_HEADER', 'x-whop-username'),
	)
