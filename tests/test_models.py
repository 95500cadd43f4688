"""
Tests for model attribute tracking, serialization and finders.
"""

from datetime import date, datetime, timezone
from typing import Optional

import pytest
from pydantic import computed_field

from conftest import make_database
from fluent_odm import (
    ConfigurationError,
    EmbeddedModel,
    Field,
    Model,
    ModelNotFoundError,
    ValidationError,
)
from fluent_odm.models.metadata import get_metadata

pytestmark = [pytest.mark.anyio, pytest.mark.usefixtures("database")]

db = make_database(naming_strategy="camel")


class Profile(EmbeddedModel, naming_strategy="camel"):
    first_name: str
    last_name: str
    bio: str = ""


class Member(Model, database=db):
    """Member with camelCase storage."""

    first_name: str
    last_name: str
    email: str
    birthday: Optional[date] = None
    joined_at: Optional[datetime] = None
    password_hash: Optional[str] = Field(None, serialize_as=None)
    nickname: Optional[str] = Field(None, serialize_as="handle")
    settings: dict = Field(default_factory=dict)
    profile: Optional[Profile] = None
    created_at: Optional[datetime] = Field(None, auto_now_add=True)

    @computed_field
    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Sku(Model, database=db):
    """Model keyed by its own code instead of id."""

    code: str = Field(primary_key=True, db_column="_id")
    label: str


class Contact(Model, database=db):
    """Model whose nickname must be given but may be None."""

    name: str
    nickname: Optional[str]


class TestRoundTrip:
    """Test document conversion in both directions."""

    async def test_hydrate_restores_attributes(self):
        """A document round-trip restores every attribute and leaves the instance clean."""
        joined = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        member = Member(
            id="m1",
            first_name="John",
            last_name="Doe",
            email="john@x.com",
            birthday=date(1990, 1, 2),
            joined_at=joined,
            settings={"theme": "dark"},
            profile=Profile(first_name="John", last_name="Doe", bio="Hi"),
        )

        restored = Member.from_document(member.to_document())

        assert restored.id == "m1"
        assert restored.first_name == "John"
        assert restored.birthday == date(1990, 1, 2)
        assert restored.joined_at == joined
        assert restored.settings == {"theme": "dark"}
        assert restored.profile.bio == "Hi"
        assert restored.get_dirty_attributes() == {}
        assert restored.is_persisted
        assert not restored.is_local

    async def test_document_uses_column_names(self):
        """Stored keys follow the naming strategy; None is stored as null."""
        member = Member(first_name="Jane", last_name="Roe", email="jane@x.com")
        document = member.to_document()
        assert document == {
            "firstName": "Jane",
            "lastName": "Roe",
            "email": "jane@x.com",
            "birthday": None,
            "joinedAt": None,
            "passwordHash": None,
            "nickname": None,
            "settings": {},
            "profile": None,
            "createdAt": None,
        }

    async def test_unset_id_is_left_out(self):
        """An id the store has not assigned yet is not written."""
        assert "_id" not in Member(first_name="A", last_name="B", email="a@b.c").to_document()

    async def test_required_nullable_survives_reload(self):
        """A required field saved as None reads back as None."""
        contact = await Contact.create(name="Ann", nickname=None)

        found = await Contact.find(contact.id)

        assert found.nickname is None
        assert db.connection().documents("contacts")[0]["nickname"] is None

    async def test_hydrate_accepts_iso_dates(self):
        """Date strings from the store are parsed by field validation."""
        member = Member.from_document({
            "_id": "m2",
            "firstName": "A",
            "lastName": "B",
            "email": "a@b.c",
            "birthday": "1990-01-02",
        })
        assert member.birthday == date(1990, 1, 2)

    async def test_embedded_document_is_nested(self):
        """Embedded models are stored as sub-documents."""
        member = Member(
            first_name="John",
            last_name="Doe",
            email="john@x.com",
            profile=Profile(first_name="John", last_name="Doe"),
        )
        assert member.to_document()["profile"] == {"firstName": "John", "lastName": "Doe", "bio": ""}


class TestDirtyTracking:
    """Test change detection."""

    async def test_new_instance_is_dirty(self):
        """Unsaved values count as changes."""
        member = Member(first_name="John", last_name="Doe", email="john@x.com")
        assert member.is_dirty()

    async def test_dirty_keys_are_column_names(self):
        """Each changed attribute appears once, under its stored name."""
        member = await Member.create(first_name="John", last_name="Doe", email="john@x.com")
        assert member.get_dirty_attributes() == {}

        member.first_name = "Jane"
        member.last_name = "Smith"
        member.nickname = "jj"

        dirty = member.get_dirty_attributes()
        assert dirty == {"firstName": "Jane", "lastName": "Smith", "nickname": "jj"}
        assert member.is_dirty("first_name")
        assert not member.is_dirty("email")

    async def test_setting_same_value_is_not_dirty(self):
        """Assigning an equal value is not a change."""
        member = await Member.create(first_name="John", last_name="Doe", email="john@x.com")
        member.first_name = "John"
        assert not member.is_dirty()

    async def test_nested_dict_change_is_dirty(self):
        """In-place changes to dict values are detected."""
        member = await Member.create(first_name="John", last_name="Doe", email="john@x.com", settings={"a": 1})
        member.settings["a"] = 2
        assert member.get_dirty_attributes() == {"settings": {"a": 2}}

    async def test_embedded_change_marks_parent_dirty(self):
        """Changing an embedded attribute dirties the parent field."""
        member = await Member.create(
            first_name="John",
            last_name="Doe",
            email="john@x.com",
            profile=Profile(first_name="John", last_name="Doe"),
        )
        member.profile.bio = "Updated"
        assert "profile" in member.get_dirty_attributes()

    async def test_computed_fields_are_never_dirty(self):
        """Computed columns are not stored."""
        member = Member.from_document({"_id": "m1", "firstName": "A", "lastName": "B", "email": "e"})
        member.first_name = "C"
        assert "fullName" not in member.get_dirty_attributes()
        assert "full_name" not in member.get_dirty_attributes()


class TestFillAndMerge:
    """Test bulk assignment."""

    async def test_fill_assigns_values(self):
        """fill sets settable attributes."""
        member = Member(first_name="John", last_name="Doe", email="john@x.com")
        member.fill(first_name="Jane", email="jane@x.com")
        assert member.first_name == "Jane"
        assert member.email == "jane@x.com"

    async def test_fill_skips_primary_key_and_timestamps(self):
        """Keys and automatic timestamps cannot be filled."""
        member = Member(first_name="John", last_name="Doe", email="john@x.com")
        member.fill(id="forged", created_at=datetime(2000, 1, 1))
        assert member.id is None
        assert member.created_at is None

    async def test_fill_rejects_unknown_attribute(self):
        """Unknown attribute names are an error."""
        member = Member(first_name="John", last_name="Doe", email="john@x.com")
        with pytest.raises(ValidationError):
            member.fill(shoe_size=44)

    async def test_merge_preserves_embedded_fields(self):
        """A partial embedded update keeps the other embedded fields."""
        member = Member(
            first_name="John",
            last_name="Doe",
            email="john@x.com",
            profile=Profile(first_name="John", last_name="Doe", bio="old"),
        )
        member.merge({"profile": {"bio": "x"}})
        assert member.profile.first_name == "John"
        assert member.profile.last_name == "Doe"
        assert member.profile.bio == "x"

    async def test_merge_deep_merges_dicts(self):
        """Dict attributes are merged key by key."""
        member = Member(
            first_name="John",
            last_name="Doe",
            email="john@x.com",
            settings={"theme": "dark", "notifications": {"email": True, "sms": True}},
        )
        member.merge(settings={"notifications": {"sms": False}})
        assert member.settings == {"theme": "dark", "notifications": {"email": True, "sms": False}}

    async def test_merged_embedded_is_saved(self):
        """A merged embedded document reaches the store on the next save."""
        member = await Member.create(
            first_name="John",
            last_name="Doe",
            email="john@x.com",
            profile=Profile(first_name="John", last_name="Doe"),
        )
        member.merge(profile={"bio": "Engineer"})
        await member.save()

        stored = db.connection().documents("members")[0]
        assert stored["profile"] == {"firstName": "John", "lastName": "Doe", "bio": "Engineer"}


class TestJson:
    """Test JSON serialization."""

    async def test_to_json(self):
        """JSON uses serialized names, includes computed values and formats dates."""
        member = Member(
            id="m1",
            first_name="John",
            last_name="Doe",
            email="john@x.com",
            birthday=date(1990, 1, 2),
            password_hash="secret",
            nickname="jj",
        )
        data = member.to_json()

        assert data["id"] == "m1"
        assert data["firstName"] == "John"
        assert data["birthday"] == "1990-01-02"
        assert data["fullName"] == "John Doe"
        assert data["handle"] == "jj"
        assert "passwordHash" not in data
        assert "nickname" not in data

    async def test_to_json_skips_bookkeeping(self):
        """Tracking state never leaks into JSON."""
        data = Member(first_name="John", last_name="Doe", email="john@x.com").to_json()
        for key in ("_original", "original", "isPersisted", "_is_persisted", "transaction"):
            assert key not in data


class TestPrimaryKeys:
    """Test primary key declaration."""

    async def test_default_primary_key(self):
        """Models are keyed by id stored as _id."""
        metadata = get_metadata(Member)
        assert metadata.primary_key == "id"
        assert metadata.primary_column() == "_id"

    async def test_declared_primary_key_replaces_id(self):
        """An explicit key takes over from the inherited id."""
        metadata = get_metadata(Sku)
        assert metadata.primary_key == "code"
        assert not metadata.columns["id"].is_primary

    async def test_two_declared_primary_keys(self):
        """Only one key may be declared."""

        class Broken(Model):
            a: str = Field(primary_key=True)
            b: str = Field(primary_key=True)

        with pytest.raises(ConfigurationError):
            get_metadata(Broken)

    async def test_custom_key_round_trip(self):
        """Models with their own key can be saved and found."""
        await Sku.create(code="ABC-1", label="Widget")
        found = await Sku.find("ABC-1")
        assert found.label == "Widget"


class TestFinders:
    """Test class-level finders."""

    async def test_find_and_find_or_fail(self):
        """find returns None when absent; find_or_fail raises."""
        member = await Member.create(first_name="John", last_name="Doe", email="john@x.com")
        assert (await Member.find(member.id)).email == "john@x.com"
        assert await Member.find("missing") is None
        with pytest.raises(ModelNotFoundError) as exc_info:
            await Member.find_or_fail("missing")
        assert str(exc_info.value) == 'Member with identifier "missing" not found'

    async def test_find_by(self):
        """find_by matches on any attribute."""
        await Member.create(first_name="John", last_name="Doe", email="john@x.com")
        member = await Member.find_by("email", "john@x.com")
        assert member.first_name == "John"
        with pytest.raises(ModelNotFoundError):
            await Member.find_by_or_fail("email", "nobody@x.com")

    async def test_first_or_create(self):
        """first_or_create only creates once."""
        first = await Member.first_or_create({"email": "a@x.com"}, {"first_name": "A", "last_name": "B"})
        second = await Member.first_or_create({"email": "a@x.com"}, {"first_name": "C", "last_name": "D"})
        assert first.id == second.id
        assert second.first_name == "A"
        assert await Member.query().count() == 1

    async def test_update_or_create(self):
        """update_or_create updates the existing match."""
        await Member.update_or_create({"email": "a@x.com"}, {"first_name": "A", "last_name": "B"})
        updated = await Member.update_or_create({"email": "a@x.com"}, {"first_name": "Z", "last_name": "B"})
        assert updated.first_name == "Z"
        assert (await Member.find_by("email", "a@x.com")).first_name == "Z"

    async def test_unbound_model(self):
        """A model without a database cannot reach a store."""

        class Orphan(Model):
            name: str

        with pytest.raises(ConfigurationError):
            await Orphan.create(name="x")

    async def test_refresh(self):
        """refresh reloads from the store and discards local changes."""
        member = await Member.create(first_name="John", last_name="Doe", email="john@x.com")
        await Member.query().where("id", member.id).update(first_name="Jack")
        member.last_name = "Local"

        await member.refresh()

        assert member.first_name == "Jack"
        assert member.last_name == "Doe"
        assert not member.is_dirty()

    async def test_refresh_unsaved(self):
        """An unsaved instance cannot be refreshed."""
        with pytest.raises(ValidationError):
            await Member(first_name="A", last_name="B", email="c").refresh()
