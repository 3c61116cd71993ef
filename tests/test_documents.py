"""Tests for model and capabilities merging."""

import pytest

from fakes import make_capabilities, make_model
from xbridge.aggregator.documents import (
    CapabilitiesDocument,
    ModelDocument,
    merge_capabilities,
    merge_model,
    remove_source,
)
from xbridge.errors import ModelConflict


def test_disjoint_models_merge_to_union():
    merged = merge_model(ModelDocument(), make_model("noderegistries"), "npm")
    merged = merge_model(merged, make_model("pythonregistries"), "pypi")

    assert set(merged.groups) == {"noderegistries", "pythonregistries"}
    assert merged.owners == {"noderegistries": "npm", "pythonregistries": "pypi"}


def test_merge_order_does_not_change_the_union():
    a, b = make_model("noderegistries"), make_model("pythonregistries")
    ab = merge_model(merge_model(ModelDocument(), a, "npm"), b, "pypi")
    ba = merge_model(merge_model(ModelDocument(), b, "pypi"), a, "npm")
    assert ab.groups == ba.groups
    assert ab.owners == ba.owners


def test_conflicting_group_raises_and_keeps_existing_owner():
    merged = merge_model(ModelDocument(), make_model("noderegistries"), "npm")
    rival = make_model("noderegistries", "extraregistries")

    with pytest.raises(ModelConflict) as info:
        merge_model(merged, rival, "rival")

    assert info.value.group_type == "noderegistries"
    assert info.value.existing_source == "npm"
    assert info.value.new_source == "rival"
    # nothing from the rejected document leaked in
    assert set(merged.groups) == {"noderegistries"}
    assert merged.owners == {"noderegistries": "npm"}


def test_same_source_may_re_merge_its_own_groups():
    merged = merge_model(ModelDocument(), make_model("noderegistries"), "npm")
    again = merge_model(merged, make_model("noderegistries"), "npm")
    assert again.groups == merged.groups


def test_merge_does_not_mutate_inputs():
    base = merge_model(ModelDocument(), make_model("noderegistries"), "npm")
    merge_model(base, make_model("pythonregistries"), "pypi")
    assert list(base.groups) == ["noderegistries"]


def test_first_attribute_value_wins():
    merged = merge_model(ModelDocument(), make_model("a", description="first"), "a")
    merged = merge_model(merged, make_model("b", description="second"), "b")
    assert merged.to_dict()["description"] == "first"


def test_to_dict_hides_owners():
    merged = merge_model(ModelDocument(), make_model("noderegistries"), "npm")
    doc = merged.to_dict()
    assert "owners" not in doc
    assert list(doc["groups"]) == ["noderegistries"]


def test_remove_source_drops_only_its_groups():
    merged = merge_model(ModelDocument(), make_model("noderegistries"), "npm")
    merged = merge_model(merged, make_model("pythonregistries", "wheelregistries"), "pypi")

    remaining = remove_source(merged, "pypi")
    assert list(remaining.groups) == ["noderegistries"]
    assert remaining.groups_of("npm") == ["noderegistries"]
    assert remaining.groups_of("pypi") == []


def test_capabilities_merge_deduplicates_apis():
    merged = merge_capabilities(
        CapabilitiesDocument(),
        make_capabilities("/capabilities", "/model", "/noderegistries", flags=("filter",)),
    )
    merged = merge_capabilities(
        merged,
        make_capabilities("/capabilities", "/model", "/pythonregistries", flags=("filter", "inline")),
    )
    assert merged.apis == ["/capabilities", "/model", "/noderegistries", "/pythonregistries"]
    assert merged.flags == ["filter", "inline"]
    assert merged.specversions == ["1.0"]


def test_capabilities_keep_unknown_keys():
    merged = merge_capabilities(CapabilitiesDocument(), {"apis": [], "pagination": True})
    merged = merge_capabilities(merged, {"apis": [], "pagination": False})
    assert merged.to_dict()["pagination"] is True
