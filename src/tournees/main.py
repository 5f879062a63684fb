"""FastAPI application entry point."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, sites, tours
from .config import Settings, settings as default_settings
from .data.sites_repository import SiteDirectory, load_sites_csv
from .persistence.filesystem import FileStorage
from .services.routing.estimator import TravelEstimator
from .services.routing.provider import RouteProvider, build_route_provider
from .services.tours.controller import TourMutationController
from .services.tours.session import TourSessionStore


def create_app(
    config: Settings | None = None,
    provider: RouteProvider | None = None,
    site_directory: SiteDirectory | None = None,
    storage: FileStorage | None = None,
) -> FastAPI:
    config = config or default_settings
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    provider = provider or build_route_provider(config)
    site_directory = site_directory or SiteDirectory(
        lambda: load_sites_csv(config.sites_file), ttl_seconds=config.site_cache_ttl_seconds
    )
    storage = storage or FileStorage(root=config.data_root)
    estimator = TravelEstimator(provider, config=config)
    controller = TourMutationController(site_directory, estimator, config=config)

    app = FastAPI(title=config.app_name, root_path="")
    app.state.config = config
    app.state.route_provider = provider
    app.state.sites = site_directory
    app.state.tour_sessions = TourSessionStore(controller, storage)

    if config.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(config.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.get("/")
    def root():
        return {
            "service": config.app_name,
            "status": "running",
            "api_prefix": config.api_prefix,
            "health": f"{config.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=config.api_prefix)
    app.include_router(sites.router, prefix=config.api_prefix)
    app.include_router(tours.router, prefix=config.api_prefix)
    return app


app = create_app()
