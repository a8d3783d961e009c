"""Tests for response shaping: modes, filters, size budget."""

from __future__ import annotations

import pytest

from sandbox_bridge.core.shaper import (
    DatasetSchema,
    compile_name_pattern,
    shape_response,
    summarize,
)
from sandbox_bridge.types import ShapeFilters


def _names(data: dict) -> list[str]:
    return [v["name"] for v in data["variables"]]


class TestSummary:
    def test_counts_and_names(self, sample_dataset):
        shaped = shape_response(sample_dataset, "summary")
        data = shaped.data
        assert shaped.mode == "summary"
        assert not shaped.downgraded
        assert data["total_variables"] == 5
        assert data["total_collections"] == 2
        primitives, semantic = data["collections"]
        assert primitives["variable_count"] == 3
        assert primitives["variable_names"] == ["blue/500", "gray/100", "spacing/4"]
        assert semantic["modes"] == ["Light", "Dark"]
        assert "valuesByMode" not in str(data)

    def test_summary_much_smaller_than_full(self, sample_dataset):
        summary = shape_response(sample_dataset, "summary")
        full = shape_response(sample_dataset, "full")
        assert summary.estimated_tokens < full.estimated_tokens

    def test_non_dataset_payload(self):
        data = summarize({"nodes": [1, 2, 3], "name": "doc"})
        assert data["keys"] == ["name", "nodes"]
        assert data["sizes"]["nodes"] == 3


class TestFiltered:
    def test_collection_by_name_substring(self, sample_dataset):
        shaped = shape_response(sample_dataset, "filtered", ShapeFilters(collection="semantic"))
        assert _names(shaped.data) == ["color/background", "color/accent"]
        assert [c["name"] for c in shaped.data["variableCollections"]] == ["Semantic Colors"]
        assert shaped.data["matched_variables"] == 2
        assert shaped.data["total_variables"] == 5

    def test_collection_by_id(self, sample_dataset):
        shaped = shape_response(
            sample_dataset, "filtered", ShapeFilters(collection="VariableCollectionId:1"),
        )
        assert len(shaped.data["variables"]) == 3

    def test_name_pattern_regex(self, sample_dataset):
        shaped = shape_response(sample_dataset, "filtered", ShapeFilters(name_pattern=r"^(blue|gray)/"))
        assert _names(shaped.data) == ["blue/500", "gray/100"]

    def test_invalid_regex_falls_back_to_substring(self, sample_dataset):
        assert compile_name_pattern("color/[").search("color/[x]")
        shaped = shape_response(sample_dataset, "filtered", ShapeFilters(name_pattern="spacing/["))
        assert _names(shaped.data) == []

    def test_mode_by_name_narrows_values(self, sample_dataset):
        shaped = shape_response(sample_dataset, "filtered", ShapeFilters(mode="dark"))
        assert _names(shaped.data) == ["color/background", "color/accent"]
        for variable in shaped.data["variables"]:
            assert list(variable["valuesByMode"]) == ["2:1"]

    def test_filters_are_anded(self, sample_dataset):
        filters = ShapeFilters(collection="Semantic", name_pattern="accent", mode="Light")
        shaped = shape_response(sample_dataset, "filtered", filters)
        assert _names(shaped.data) == ["color/accent"]
        assert shaped.to_dict()["filters"] == {
            "collection": "Semantic", "name_pattern": "accent", "mode": "Light",
        }

    def test_metadata_preserved(self, sample_dataset):
        shaped = shape_response(sample_dataset, "filtered", ShapeFilters(name_pattern="blue"))
        assert shaped.data["fileMetadata"]["fileName"] == "Design System"

    def test_input_not_mutated(self, sample_dataset):
        before = repr(sample_dataset)
        shape_response(sample_dataset, "filtered", ShapeFilters(mode="Dark"))
        assert repr(sample_dataset) == before


class TestBudget:
    def test_full_within_budget(self, sample_dataset):
        shaped = shape_response(sample_dataset, "full", token_budget=25_000)
        assert shaped.mode == "full"
        assert shaped.data is sample_dataset

    def test_over_budget_downgrades_to_summary(self, sample_dataset):
        shaped = shape_response(sample_dataset, "full", token_budget=200)
        assert shaped.mode == "summary"
        assert shaped.requested_mode == "full"
        assert shaped.downgraded is True
        out = shaped.to_dict()
        assert out["downgraded"] is True
        assert "notice" in out
        assert "total_variables" in out["data"]

    def test_oversized_summary_drops_names(self, sample_dataset):
        shaped = shape_response(sample_dataset, "summary", token_budget=20)
        assert shaped.data.get("names_omitted") is True
        assert "variable_names" not in shaped.data["collections"][0]
        assert shaped.names_omitted
        out = shaped.to_dict()
        assert out["names_omitted"] is True
        assert "names were omitted" in out["notice"]
        assert "downgraded" not in out

    def test_fitting_summary_has_no_notice(self, sample_dataset):
        out = shape_response(sample_dataset, "summary").to_dict()
        assert "notice" not in out
        assert "names_omitted" not in out

    def test_unknown_mode_rejected(self, sample_dataset):
        with pytest.raises(ValueError, match="Unknown response mode"):
            shape_response(sample_dataset, "verbose")


class TestSchema:
    def test_custom_key_names(self):
        payload = {
            "tokens": [{"id": "t1", "label": "primary", "group": "g1", "values": {"m": 1}}],
            "groups": [{"id": "g1", "label": "Brand", "modes": []}],
        }
        schema = DatasetSchema(items="tokens", groups="groups", group_ref="group", values="values", name="label")
        data = summarize(payload, schema)
        assert data["total_variables"] == 1
        assert data["collections"][0]["variable_names"] == ["primary"]
