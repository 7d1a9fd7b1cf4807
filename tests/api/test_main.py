"""Tests for the FastAPI application creation."""

from __future__ import annotations

from src.api.main import create_app


class TestAppCreation:
    """Test suite for FastAPI app factory."""

    def test_create_app_returns_fastapi(self) -> None:
        from fastapi import FastAPI

        app = create_app()
        assert isinstance(app, FastAPI)

    def test_app_metadata(self) -> None:
        app = create_app()
        assert app.title == "FlowWatch"
        assert app.version == "1.0.0"

    def test_routes_registered(self) -> None:
        """App should expose health and the operator alert routes."""
        app = create_app()
        route_paths = [route.path for route in app.routes]
        assert "/api/v1/health" in route_paths
        assert "/api/v1/alerts/run" in route_paths
        assert "/api/v1/alerts/demo" in route_paths
        assert "/api/v1/alerts/runs" in route_paths
