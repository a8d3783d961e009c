"""Shared fixtures for sandbox-bridge tests."""

from __future__ import annotations

from collections import defaultdict
from typing import Any

import pytest

from sandbox_bridge.config import load_config
from sandbox_bridge.types import BridgeConfig


class FakeContext:
    """In-memory ExecutionContext.

    ``has_capability`` answers probe expressions (or raises when it is an
    exception). Every other evaluation consumes the next item of
    ``results``: exceptions are raised, async callables are awaited with
    the expression, anything else is returned.
    """

    def __init__(
        self,
        kind: str = "worker",
        url: str = "blob:https://www.figma.com/worker-1",
        name: str = "",
        has_capability: Any = True,
        results: list | None = None,
        detached: bool = False,
    ) -> None:
        self.kind = kind
        self._url = url
        self._name = name
        self.has_capability = has_capability
        self.results = list(results or [])
        self.detached = detached
        self.evaluated: list[str] = []

    @property
    def url(self) -> str:
        return self._url

    @property
    def name(self) -> str:
        return self._name

    def is_detached(self) -> bool:
        return self.detached

    async def evaluate(self, expression: str) -> Any:
        self.evaluated.append(expression)
        if expression.startswith("typeof "):
            if isinstance(self.has_capability, BaseException):
                raise self.has_capability
            return self.has_capability
        if not self.results:
            return None
        item = self.results.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item(expression)
        return item


class FakeTarget:
    """In-memory DebugTarget with helpers to fire events."""

    def __init__(
        self,
        main_url: str = "https://www.figma.com/design/abc123/My-File",
        workers: list[FakeContext] | None = None,
        frames: list[FakeContext] | None = None,
    ) -> None:
        self.main = FakeContext(kind="frame", url=main_url, has_capability=False)
        self._workers = list(workers or [])
        self._frames = [self.main, *(frames or [])]
        self.handlers: dict[str, list] = defaultdict(list)
        self.context_handlers: dict[int, Any] = {}

    def frames(self) -> list[FakeContext]:
        return list(self._frames)

    def workers(self) -> list[FakeContext]:
        return list(self._workers)

    def main_frame(self) -> FakeContext:
        return self.main

    def on(self, event: str, handler) -> None:
        self.handlers[event].append(handler)

    def off(self, event: str, handler) -> None:
        if handler in self.handlers[event]:
            self.handlers[event].remove(handler)

    def on_context_console(self, context, handler):
        self.context_handlers[id(context)] = handler
        return lambda: self.context_handlers.pop(id(context), None)

    # -- test helpers --------------------------------------------------

    def set_workers(self, workers: list[FakeContext]) -> None:
        self._workers = list(workers)

    def set_frames(self, frames: list[FakeContext]) -> None:
        self._frames = [self.main, *frames]

    def emit(self, event: str, message: Any) -> None:
        for handler in list(self.handlers[event]):
            handler(message)

    def emit_from_context(self, context: FakeContext, message: Any) -> None:
        self.context_handlers[id(context)](message)


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def sample_config(tmp_path) -> BridgeConfig:
    return load_config(config_dict={
        "console": {"buffer_size": 100},
        "execution": {"retry_delay": 0, "ui_timeout_ms": 1000, "worker_timeout_ms": 1000},
        "ports": {"advertisement_dir": str(tmp_path / "adverts")},
    })


@pytest.fixture
def sample_dataset() -> dict:
    """Variables dataset in the shape the sandbox query returns."""
    return {
        "success": True,
        "timestamp": 1760000000000,
        "fileMetadata": {"fileName": "Design System", "fileKey": "abc123"},
        "variableCollections": [
            {
                "id": "VariableCollectionId:1",
                "name": "Primitives",
                "modes": [{"modeId": "1:0", "name": "Default"}],
                "defaultModeId": "1:0",
                "variableIds": ["VariableID:1", "VariableID:2", "VariableID:3"],
            },
            {
                "id": "VariableCollectionId:2",
                "name": "Semantic Colors",
                "modes": [
                    {"modeId": "2:0", "name": "Light"},
                    {"modeId": "2:1", "name": "Dark"},
                ],
                "defaultModeId": "2:0",
                "variableIds": ["VariableID:4", "VariableID:5"],
            },
        ],
        "variables": [
            {
                "id": "VariableID:1",
                "name": "blue/500",
                "resolvedType": "COLOR",
                "variableCollectionId": "VariableCollectionId:1",
                "valuesByMode": {"1:0": {"r": 0.1, "g": 0.4, "b": 0.9, "a": 1}},
            },
            {
                "id": "VariableID:2",
                "name": "gray/100",
                "resolvedType": "COLOR",
                "variableCollectionId": "VariableCollectionId:1",
                "valuesByMode": {"1:0": {"r": 0.95, "g": 0.95, "b": 0.95, "a": 1}},
            },
            {
                "id": "VariableID:3",
                "name": "spacing/4",
                "resolvedType": "FLOAT",
                "variableCollectionId": "VariableCollectionId:1",
                "valuesByMode": {"1:0": 16},
            },
            {
                "id": "VariableID:4",
                "name": "color/background",
                "resolvedType": "COLOR",
                "variableCollectionId": "VariableCollectionId:2",
                "valuesByMode": {
                    "2:0": {"type": "VARIABLE_ALIAS", "id": "VariableID:2"},
                    "2:1": {"r": 0.1, "g": 0.1, "b": 0.1, "a": 1},
                },
            },
            {
                "id": "VariableID:5",
                "name": "color/accent",
                "resolvedType": "COLOR",
                "variableCollectionId": "VariableCollectionId:2",
                "valuesByMode": {
                    "2:0": {"type": "VARIABLE_ALIAS", "id": "VariableID:1"},
                    "2:1": {"type": "VARIABLE_ALIAS", "id": "VariableID:1"},
                },
            },
        ],
    }
