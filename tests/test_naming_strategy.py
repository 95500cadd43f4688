"""
Tests for naming strategies.

Covers the case helpers, collection naming, relationship key defaults and
how a strategy flows into model metadata.
"""

from typing import Optional

import pytest

from fluent_odm import EmbeddedModel, Field, Model, has_many
from fluent_odm.models.metadata import get_metadata
from fluent_odm.naming import (
    CamelCaseNamingStrategy,
    SnakeCaseNamingStrategy,
    VerbatimNamingStrategy,
    camel_case,
    pluralize,
    resolve_strategy,
    singularize,
    snake_case,
)


class Author(Model):
    first_name: str
    books = has_many(lambda: Book)


class Book(Model, naming_strategy="camel"):
    title: str
    author_id: Optional[str] = None
    page_count: int = 0


class BlogEntry(Model, naming_strategy=VerbatimNamingStrategy()):
    headline: str


class Coordinates(EmbeddedModel, naming_strategy="camel"):
    latitude_deg: float
    longitude_deg: float


class Venue(Model, naming_strategy="camel", collection="places"):
    display_name: str = Field(db_column="label")
    location: Optional[Coordinates] = None


class TestCaseHelpers:
    """Test the string case conversions."""

    def test_snake_case(self):
        """camelCase and PascalCase become snake_case."""
        assert snake_case("firstName") == "first_name"
        assert snake_case("UserProfile") == "user_profile"
        assert snake_case("already_snake") == "already_snake"

    def test_snake_case_keeps_acronyms_together(self):
        """Runs of capitals form one word."""
        assert snake_case("HTTPServer") == "http_server"
        assert snake_case("userID") == "user_id"

    def test_camel_case(self):
        """snake_case becomes camelCase."""
        assert camel_case("first_name") == "firstName"
        assert camel_case("page_count") == "pageCount"
        assert camel_case("title") == "title"

    def test_camel_case_keeps_leading_underscore(self):
        """Store-reserved names such as _id survive."""
        assert camel_case("_id") == "_id"

    @pytest.mark.parametrize("word,plural", [
        ("user", "users"),
        ("category", "categories"),
        ("address", "addresses"),
        ("box", "boxes"),
        ("match", "matches"),
        ("wish", "wishes"),
    ])
    def test_pluralize(self, word, plural):
        """Suffix rules produce the plural form."""
        assert pluralize(word) == plural

    def test_singularize(self):
        """Singularize undoes the common plural suffixes."""
        assert singularize("categories") == "category"
        assert singularize("boxes") == "box"
        assert singularize("users") == "user"
        assert singularize("address") == "address"
        assert singularize("status") == "status"


class TestStrategies:
    """Test the built-in strategies."""

    def test_snake_case_strategy_uses_singular_collection(self):
        """The default strategy names collections after the singular class name."""
        strategy = SnakeCaseNamingStrategy()
        assert strategy.table_name(Author) == "author"
        assert strategy.table_name(BlogEntry) == "blog_entry"

    def test_camel_case_strategy(self):
        """camelCase columns and plural collections."""
        strategy = CamelCaseNamingStrategy()
        assert strategy.column_name(Book, "page_count") == "pageCount"
        assert strategy.serialized_name(Book, "author_id") == "authorId"
        assert strategy.table_name(Book) == "books"

    def test_verbatim_strategy(self):
        """Names are kept as declared."""
        strategy = VerbatimNamingStrategy()
        assert strategy.column_name(BlogEntry, "headline") == "headline"
        assert strategy.table_name(BlogEntry) == "blog_entries"

    def test_camel_case_pagination_keys(self):
        """Pagination metadata keys follow the strategy."""
        keys = CamelCaseNamingStrategy().pagination_meta_keys()
        assert keys["last_page"] == "lastPage"
        assert keys["per_page"] == "perPage"
        assert SnakeCaseNamingStrategy().pagination_meta_keys()["last_page"] == "last_page"

    def test_relation_keys(self):
        """has_* keys point back at the owner; belongs_to keys name the related model."""
        strategy = SnakeCaseNamingStrategy()
        assert strategy.relation_foreign_key("has_many", Author, Book) == "author_id"
        assert strategy.relation_local_key("has_many", Author, Book) == "id"
        assert strategy.relation_foreign_key("belongs_to", Book, Author) == "author_id"
        assert strategy.relation_local_key("belongs_to", Book, Author) == "id"

    def test_resolve_strategy(self):
        """Strategies can be given by instance, class or name."""
        assert isinstance(resolve_strategy(None), SnakeCaseNamingStrategy)
        assert isinstance(resolve_strategy("camel"), CamelCaseNamingStrategy)
        assert isinstance(resolve_strategy(VerbatimNamingStrategy), VerbatimNamingStrategy)
        instance = CamelCaseNamingStrategy()
        assert resolve_strategy(instance) is instance

    def test_resolve_unknown_strategy(self):
        """Unknown names are rejected."""
        with pytest.raises(ValueError):
            resolve_strategy("kebab")


class TestModelNaming:
    """Test how strategies flow into model metadata."""

    def test_default_collection_name(self):
        """Models without a strategy use the default one."""
        assert Author.collection_name() == "author"

    def test_model_strategy_collection_name(self):
        """A model-level strategy names the collection."""
        assert Book.collection_name() == "books"

    def test_explicit_collection_wins(self):
        """The collection keyword overrides the strategy."""
        assert Venue.collection_name() == "places"

    def test_primary_key_column_is_store_id(self):
        """The id attribute is stored under _id whatever the strategy."""
        assert get_metadata(Book).column_name("id") == "_id"
        assert get_metadata(Author).column_name("id") == "_id"

    def test_db_column_override(self):
        """db_column beats the strategy."""
        assert get_metadata(Venue).column_name("display_name") == "label"

    def test_translate_embedded_path(self):
        """Paths into embedded documents use the embedded model's names."""
        metadata = get_metadata(Venue)
        assert metadata.translate_path("location.latitude_deg") == "location.latitudeDeg"
        assert metadata.translate_path("unknown.path") == "unknown.path"

    def test_document_uses_column_names(self):
        """to_document writes strategy column names."""
        book = Book(title="Dune", author_id="a1", page_count=412)
        assert book.to_document() == {"title": "Dune", "authorId": "a1", "pageCount": 412}
