"""Tests for the UNSET marker and attribute containers."""

import copy
import pickle
from types import MappingProxyType

import pytest

from vagrant_cloud.core.data import UNSET, Attribute, Immutable, Mutable, MutableAttribute, UnsetType, freeze
from vagrant_cloud.core.errors import ConfigurationError, DataTypeError, ValidationError


class Record(Immutable):
    attr_required = ("name",)
    attr_optional = ("size", "labels")


class Thing(Mutable):
    attr_required = ("name",)
    attr_optional = ("description", "tags", "created_at")
    attr_mutable = ("description", "tags")


class SpecialThing(Thing):
    attr_optional = ("color",)
    attr_mutable = ("color",)

    @property
    def description(self):
        return f"special {self['description']}"


class SpecialerThing(SpecialThing):
    attr_optional = ("weight",)


# =============================================================================
# UNSET
# =============================================================================


class TestUnset:
    def test_equals_none(self):
        assert UNSET == None  # noqa: E711
        assert None == UNSET  # noqa: E711

    def test_is_not_none(self):
        assert UNSET is not None

    def test_falsy(self):
        assert not UNSET

    def test_singleton(self):
        assert UnsetType() is UNSET
        assert copy.copy(UNSET) is UNSET
        assert copy.deepcopy({"a": UNSET})["a"] is UNSET
        assert pickle.loads(pickle.dumps(UNSET)) is UNSET

    def test_not_equal_to_other_values(self):
        assert UNSET != 0
        assert UNSET != ""
        assert UNSET != False  # noqa: E712

    def test_repr(self):
        assert repr(UNSET) == "UNSET"
        assert str(UNSET) == ""


def test_freeze_nested():
    frozen = freeze({"a": [1, {"b": [2]}], "c": {3}})
    assert isinstance(frozen, MappingProxyType)
    assert frozen["a"] == (1, MappingProxyType({"b": (2,)}))
    assert frozen["c"] == frozenset({3})
    with pytest.raises(TypeError):
        frozen["a"][1]["b"] = 1


# =============================================================================
# Immutable
# =============================================================================


class TestImmutable:
    def test_requires_required_attributes(self):
        with pytest.raises(ValidationError, match="Missing required parameter `name`"):
            Record()

    def test_rejects_unknown_attributes(self):
        with pytest.raises(ValidationError, match="Unknown parameters provided: color,weight"):
            Record(name="a", color="red", weight=1)

    def test_optional_defaults_to_unset(self):
        record = Record(name="a")
        assert record.size is UNSET
        assert record["size"] is UNSET

    def test_undeclared_item_is_unset(self):
        assert Record(name="a")["missing"] is UNSET

    def test_attributes_are_read_only(self):
        record = Record(name="a")
        with pytest.raises(AttributeError):
            record.name = "b"

    def test_values_are_copied_and_frozen(self):
        labels = {"os": ["ubuntu"]}
        record = Record(name="a", labels=labels)
        labels["os"].append("debian")
        assert record.labels["os"] == ("ubuntu",)
        with pytest.raises(TypeError):
            record.labels["os"] = "debian"

    def test_attributes(self):
        assert Record.attributes() == ("name", "size", "labels")

    def test_repr_skips_empty_values(self):
        text = repr(Record(name="a", size=None))
        assert "name='a'" in text
        assert "size" not in text


# =============================================================================
# Mutable
# =============================================================================


class TestMutable:
    def test_invalid_mutable_declaration(self):
        with pytest.raises(ConfigurationError, match="Unknown attribute name provided `other`"):

            class Broken(Mutable):
                attr_required = ("name",)
                attr_mutable = ("other",)

    def test_only_mutable_attributes_have_setters(self):
        thing = Thing(name="a")
        thing.description = "changed"
        with pytest.raises(AttributeError):
            thing.created_at = "now"

    def test_set_records_pending_change(self):
        thing = Thing(name="a", description="original")
        thing.description = "changed"
        assert thing.description == "changed"
        assert thing._data["description"] == "original"
        assert thing.is_dirty()
        assert thing.is_dirty("description")
        assert not thing.is_dirty("name")

    def test_pending_values_are_not_frozen(self):
        thing = Thing(name="a")
        thing.tags = ["x"]
        assert thing.tags == ["x"]

    def test_not_dirty_after_construction(self):
        assert not Thing(name="a", description="d").is_dirty()

    def test_commit(self):
        thing = Thing(name="a")
        thing.tags = ["x"]
        thing.commit()
        assert not thing.is_dirty()
        assert thing.tags == ("x",)

    def test_commit_is_idempotent(self):
        thing = Thing(name="a")
        thing.description = "changed"
        thing.commit()
        data = dict(thing._data)
        thing.commit()
        assert dict(thing._data) == data
        assert not thing.is_dirty()

    def test_clean_replaces_baseline_and_pending(self):
        thing = Thing(name="a")
        thing.description = "local"
        thing.tags = ["local"]
        thing.clean(data={"description": "remote"})
        assert thing.description == "remote"
        assert not thing.is_dirty("description")
        assert thing.is_dirty("tags")

    def test_clean_round_trip(self):
        thing = Thing(name="a")
        thing.description = "value"
        thing.clean(data={"description": "value"})
        assert not thing.is_dirty("description")
        assert thing.description == "value"

    def test_clean_ignores(self):
        thing = Thing(name="a")
        thing.clean(data={"description": "d", "created_at": "now"}, ignores="created_at")
        assert thing.description == "d"
        assert thing.created_at is UNSET

    def test_clean_only(self):
        thing = Thing(name="a")
        thing.clean(data={"description": "d", "created_at": "now"}, only=["created_at"])
        assert thing.description is UNSET
        assert thing.created_at == "now"

    def test_clean_skips_undeclared_keys(self):
        thing = Thing(name="a")
        thing.clean(data={"unknown": 1})
        assert thing["unknown"] is UNSET

    def test_clean_requires_mapping(self):
        with pytest.raises(DataTypeError):
            Thing(name="a").clean(data=["description"])

    def test_clean_returns_self(self):
        thing = Thing(name="a")
        assert thing.clean(data={}) is thing

    def test_load(self):
        thing = Thing.load({"description": "d", "extra": True})
        assert thing.name is None
        assert thing.description == "d"

    def test_declarations_are_inherited(self):
        assert SpecialThing.attr_optional == ("description", "tags", "created_at", "color")
        assert SpecialThing.attr_mutable == ("description", "tags", "color")
        thing = SpecialThing(name="a")
        thing.color = "red"
        assert thing.is_dirty("color")

    def test_class_body_accessor_wins(self):
        thing = SpecialThing(name="a", description="box")
        assert thing.description == "special box"
        assert SpecialerThing(name="a", description="box").description == "special box"

    def test_resource_values_stay_live(self):
        inner = Thing(name="inner")
        outer = Thing(name="outer", tags=[inner])
        inner.description = "changed"
        assert outer.tags[0] is inner
        assert outer.tags[0].description == "changed"

    def test_subclass_declaration_installs_accessors(self):
        class Local(Mutable):
            attr_required = ("name",)
            attr_optional = ("size",)
            attr_mutable = ("size",)

        assert type(Local.__dict__["name"]) is Attribute
        assert type(Local.__dict__["size"]) is MutableAttribute


def test_package_exports():
    import vagrant_cloud

    for name in vagrant_cloud.__all__:
        assert getattr(vagrant_cloud, name) is not None
    assert issubclass(vagrant_cloud.Box, Mutable)
