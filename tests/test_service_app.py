"""Tests for the HTTP discovery endpoints."""

from __future__ import annotations

import os

import pytest
from starlette.testclient import TestClient

from sandbox_bridge import __version__
from sandbox_bridge.core import ports
from sandbox_bridge.service.app import SERVICE_NAME, create_app
from sandbox_bridge.session import BridgeSession


class FakeSocket:
    def close(self) -> None:
        pass


@pytest.fixture
def advertised_session(sample_config, monkeypatch):
    monkeypatch.setattr(ports, "_try_bind", lambda host, port: FakeSocket())
    session = BridgeSession(sample_config)
    session.claim_and_advertise_port(9500)
    yield session
    session.coordinator.release()


class TestDiscoveryApp:
    def test_health(self, advertised_session):
        client = TestClient(create_app(advertised_session, instance_label="left"))

        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["service"] == SERVICE_NAME
        assert data["version"] == __version__
        assert data["label"] == "left"
        assert data["pid"] == os.getpid()
        assert data["port"] == 9500
        assert data["advertisement"]["port"] == 9500
        assert data["connected"] is False

    def test_instances(self, advertised_session):
        client = TestClient(create_app(advertised_session))

        data = client.get("/instances", params={"preferred_port": 9500}).json()

        assert [i["port"] for i in data["instances"]] == [9500]

    def test_instances_outside_range(self, advertised_session):
        client = TestClient(create_app(advertised_session))
        data = client.get("/instances", params={"preferred_port": 9600}).json()
        assert data["instances"] == []

    def test_status(self, advertised_session):
        client = TestClient(create_app(advertised_session))

        data = client.get("/status").json()

        assert data["port"] == 9500
        assert data["console"]["log_count"] == 0
        assert data["cache"]["entries"] == 0

    def test_title_includes_label(self, advertised_session):
        app = create_app(advertised_session, instance_label="second")
        assert app.title == "sandbox-bridge [second]"
