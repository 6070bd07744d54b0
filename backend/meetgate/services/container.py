import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import requests

from meetgate.core.cache import TTLCache
from meetgate.core.config import Settings
from meetgate.core.security import StorefrontAccessGate, firestore_client
from meetgate.services.credential_store import CredentialStore
from meetgate.services.join_signature import JoinSignatureService
from meetgate.services.live_meeting_resolver import LiveMeetingResolver, default_strategies
from meetgate.services.meeting_lifecycle import MeetingLifecycleService
from meetgate.services.meeting_status_repository import MeetingStatusRepository
from meetgate.services.token_broker import TokenBroker
from meetgate.services.webhook_ingest import WebhookIngestService
from meetgate.services.zoom_client import ZoomClient


@dataclass
class ServiceContainer:
	"""Application-scoped services; caches live here, not in module globals."""
	settings: Settings
	access_gate: StorefrontAccessGate
	zoom: ZoomClient
	credential_store: CredentialStore
	token_broker: TokenBroker
	meeting_status: MeetingStatusRepository
	resolver: LiveMeetingResolver
	lifecycle: MeetingLifecycleService
	join_signatures: JoinSignatureService
	webhooks: WebhookIngestService


def build_services(
	settings: Settings,
	*,
	client_factory: Callable[[], Any] = firestore_client,
	zoom_client: ZoomClient | None = None,
	access_gate: StorefrontAccessGate | None = None,
	clock: Callable[[], float] = time.time,
) -> ServiceContainer:
	session = requests.Session()
	zoom = zoom_client or ZoomClient(settings, session)
	gate = access_gate or StorefrontAccessGate(settings, session)

	def wall_clock() -> datetime:
		return datetime.fromtimestamp(clock(), tz=timezone.utc)

	credential_cache = TTLCache(ttl_seconds=settings.credential_cache_ttl_seconds, clock=clock)
	token_cache = TTLCache(ttl_seconds=3600, clock=clock)

	credential_store = CredentialStore(settings, zoom, credential_cache, client_factory=client_factory)
	token_broker = TokenBroker(
		credential_store,
		zoom,
		token_cache,
		refresh_margin_seconds=settings.token_refresh_margin_seconds,
	)
	meeting_status = MeetingStatusRepository(client_factory=client_factory)
	resolver = LiveMeetingResolver(
		credential_store,
		token_broker,
		zoom,
		meeting_status,
		default_strategies(
			recently_ended_window_seconds=settings.recently_ended_window_seconds,
			max_account_users=settings.max_account_users_scanned,
		),
		clock=wall_clock,
	)
	return ServiceContainer(
		settings=settings,
		access_gate=gate,
		zoom=zoom,
		credential_store=credential_store,
		token_broker=token_broker,
		meeting_status=meeting_status,
		resolver=resolver,
		lifecycle=MeetingLifecycleService(credential_store, token_broker, zoom, clock=wall_clock),
		join_signatures=JoinSignatureService(credential_store, clock=clock),
		webhooks=WebhookIngestService(
			credential_store,
			meeting_status,
			token_broker,
			zoom,
			bootstrap_secret=settings.webhook_bootstrap_secret,
			max_skew_seconds=settings.webhook_max_skew_seconds,
			clock=clock,
		),
	)
