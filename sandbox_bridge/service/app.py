"""HTTP discovery endpoints served on the claimed port.

Plugins and other tools scan the port range and call ``/health`` to find
the instance they should talk to.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from .. import __version__
from ..session import BridgeSession

logger = logging.getLogger(__name__)

SERVICE_NAME = "sandbox-bridge"


def create_app(session: BridgeSession, *, instance_label: str = "") -> FastAPI:
    """Create the discovery app bound to *session*.

    Args:
        session: The process-wide bridge session.
        instance_label: Human-readable label shown in ``/health``.
    """
    title = SERVICE_NAME
    if instance_label:
        title += f" [{instance_label}]"
    app = FastAPI(title=title)
    app.state.session = session
    app.state.instance_label = instance_label

    @app.get("/health")
    async def health():
        advertisement = session.coordinator.advertisement
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "label": instance_label,
            "pid": session.coordinator.pid,
            "port": session.coordinator.port,
            "advertisement": advertisement.to_dict() if advertisement else None,
            "connected": session.target is not None,
        }

    @app.get("/instances")
    async def instances(preferred_port: int | None = None):
        found = session.discover_instances(preferred_port)
        return {"instances": [a.to_dict() for a in found]}

    @app.get("/status")
    async def status():
        return session.status()

    logger.debug("Discovery app ready (port %s)", session.coordinator.port)
    return app
