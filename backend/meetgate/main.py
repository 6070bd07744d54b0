import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load environment variables from .env file BEFORE importing modules that need them
load_dotenv()

from meetgate.core.config import get_settings
from meetgate.core.security import initialize_firebase
from meetgate.api import (
	join_token as join_token_routes,
	meetings as meeting_routes,
	settings as settings_routes,
	zoom_webhook as webhook_routes,
)
from meetgate.services.container import ServiceContainer, build_services

# Configure logging
logging.basicConfig(
	level=logging.INFO,
	format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def create_app(services: ServiceContainer | None = None) -> FastAPI:
	"""Build the API. Passing ``services`` skips Firebase initialization."""
	settings = services.settings if services else get_settings()

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		"""FastAPI lifespan event handler for startup/shutdown."""
		if services is None:
			initialize_firebase()
			logger.info('Firebase Admin SDK initialized')
		yield
		logger.info('Application shutting down')

	app = FastAPI(
		title='Meetgate',
		description='Multi-tenant Zoom meeting broker for storefront livestreams',
		version='1.0.0',
		lifespan=lifespan,
	)
	app.state.services = services or build_services(settings)

	# Enable CORS for frontend
	app.add_middleware(
		CORSMiddleware,
		allow_origins=settings.cors_allow_origins,
		allow_origin_regex=settings.cors_allow_origin_regex,
		allow_credentials=True,
		allow_methods=['*'],
		allow_headers=['*'],
	)

	# Include routers
	app.include_router(settings_routes.router)
	app.include_router(meeting_routes.router)
	app.include_router(join_token_routes.router)
	app.include_router(webhook_routes.router)

	@app.get('/health')
	async def health_check():
		"""Health check endpoint."""
		return {'status': 'healthy'}

	@app.get('/')
	async def root():
		"""Root endpoint."""
		return {
			'message': 'Meetgate API',
			'docs': '/docs',
			'health': '/health',
		}

	return app


app = create_app()


if __name__ == '__main__':
	import uvicorn
	uvicorn.run(
		'meetgate.main:app',
		host=os.getenv('API_HOST', '0.0.0.0'),
		port=int(os.getenv('API_PORT', '9000')),
		reload=True,
	)
