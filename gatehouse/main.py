import logging

from fastapi import FastAPI

from gatehouse.config import settings
from gatehouse.realtime.presence import PresenceRegistry
from gatehouse.routers import admin, auth, guests, notifications, push, realtime, visits
from gatehouse.security.headers import install_security_headers
from gatehouse.security.sessions import install_auth_session_middleware
from gatehouse.services.provider_factory import get_push_gateway


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )


def create_app(*, push_gateway=None) -> FastAPI:
    configure_logging()
    app = FastAPI(title='Gatehouse')

    # One registry per application object; routes and services receive it through app.state.
    app.state.presence = PresenceRegistry()
    app.state.push_gateway = push_gateway or get_push_gateway()

    install_security_headers(app)
    install_auth_session_middleware(app)

    app.include_router(auth.router)
    app.include_router(guests.router)
    app.include_router(visits.router)
    app.include_router(notifications.router)
    app.include_router(push.router)
    app.include_router(admin.router)
    app.include_router(realtime.router)

    @app.get('/health')
    def health() -> dict:
        return {'status': 'ok'}

    return app


app = create_app()
