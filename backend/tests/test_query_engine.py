"""Tests for listing queries."""

from __future__ import annotations

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, select, text
from sqlalchemy.exc import OperationalError

from entityforge.errors import FilterValueError, NotFoundError, SortFieldError
from entityforge.query.request import QueryRequest
from entityforge.relationships.specs import OneToMany


@pytest.fixture
def products(service):
    config = service.entity("products")
    rows = [
        {"name": "Widget A", "price": 5.0, "category_id": 1, "released_on": "2024-01-10"},
        {"name": "Gadget", "price": 20.0, "category_id": 1, "released_on": "2024-02-01"},
        {"name": "Widget B", "price": 9.5, "category_id": 2, "released_on": "2024-03-15"},
        {"name": "Big widget", "price": 9.5, "category_id": 2, "active": False},
        {"name": "Doohickey", "price": 1.0, "category_id": 3},
    ]
    for row in rows:
        service.create_entity(config, row)
    return config


def _names(result):
    return [row["name"] for row in result.rows]


class TestListing:
    def test_filter_sort_with_tiebreak(self, products, service):
        result = service.list_entities(
            products,
            params={
                "filters": {"name": {"type": "like", "value": "wid"}},
                "sorts": {"price": "desc"},
                "page": 0,
                "size": 10,
            },
        )
        assert result.count_filtered == 3
        assert result.count == 5
        # Widget B (id 3) and Big widget (id 4) share a price
        assert [(r["id"], r["price"]) for r in result.rows] == [(3, 9.5), (4, 9.5), (1, 5.0)]

    def test_default_sort_from_schema(self, products, service):
        result = service.list_entities(products)
        assert _names(result) == ["Big widget", "Doohickey", "Gadget", "Widget A", "Widget B"]

    def test_metadata_lists(self, products, service):
        result = service.list_entities(products)
        assert "secret_cost" not in result.listable
        assert result.sortable == ["id", "name", "price", "released_on"]
        assert result.to_dict()["count"] == 5

    def test_rows_hold_only_listable_fields(self, products, service):
        service.update_entity(products, 1, {"secret_cost": 3.0})
        assert service.get_entity(products, 1)["secret_cost"] == 3.0

        row = service.list_entities(products, params={"filters": {"id": 1}}).rows[0]
        assert set(row) == set(products.listable)
        assert "secret_cost" not in row
        assert "deleted_at" not in row
        assert row["id"] == 1

    def test_rows_are_hydrated(self, products, service):
        row = service.list_entities(products, params={"filters": {"name": "gadget"}}).rows[0]
        assert row["price"] == 20.0
        assert row["active"] is True
        assert row["released_on"].isoformat() == "2024-02-01"

    def test_pagination_is_deterministic(self, products, service):
        params = {"sorts": {"price": "asc"}, "size": 2}
        pages = [
            _names(service.list_entities(products, params={**params, "page": page}))
            for page in range(3)
        ]
        again = [
            _names(service.list_entities(products, params={**params, "page": page}))
            for page in range(3)
        ]
        assert pages == again
        assert pages == [["Doohickey", "Widget A"], ["Widget B", "Big widget"], ["Gadget"]]

    def test_size_is_capped(self, products, service):
        service.engine.max_page_size = 2
        result = service.list_entities(products, params={"size": 50})
        assert len(result.rows) == 2
        assert result.count_filtered == 5

    def test_search_across_searchable_fields(self, products, service):
        result = service.list_entities(products, params={"search": "WIDGET"})
        assert result.count_filtered == 3

    def test_search_ignored_without_searchable_fields(self, service):
        config = service.entity("permissions")
        service.create_entity(config, {"slug": "view"})
        result = service.list_entities(config, params={"search": "nothing-matches"})
        assert result.count_filtered == 1

    def test_soft_deleted_rows_are_excluded(self, products, service):
        service.delete_entity(products, 2)
        result = service.list_entities(products)
        assert result.count == 4
        assert "Gadget" not in _names(result)


class TestFilters:
    @pytest.mark.parametrize(
        "filters,expected",
        [
            ({"category_id": 1}, ["Gadget", "Widget A"]),
            ({"category_id": "2"}, ["Big widget", "Widget B"]),
            ({"price": {"type": "greater_than", "value": 9}}, ["Big widget", "Gadget", "Widget B"]),
            ({"price": {"type": "less_than", "value": "5"}}, ["Doohickey"]),
            ({"price": {"type": "between", "value": [5, 9.5]}}, ["Big widget", "Widget A", "Widget B"]),
            ({"category_id": {"type": "in", "value": "1,3"}}, ["Doohickey", "Gadget", "Widget A"]),
            ({"category_id": {"type": "not_equals", "value": 1}}, ["Big widget", "Doohickey", "Widget B"]),
            ({"name": {"type": "starts_with", "value": "widget"}}, ["Widget A", "Widget B"]),
            ({"name": {"type": "ends_with", "value": "GET"}}, ["Gadget"]),
            ({"active": "false"}, ["Big widget"]),
            ({"released_on": {"type": "greater_than", "value": "2024-01-31"}}, ["Gadget", "Widget B"]),
        ],
    )
    def test_filter_types(self, products, service, filters, expected):
        result = service.list_entities(products, params={"filters": filters})
        assert _names(result) == expected

    def test_like_escapes_wildcards(self, products, service):
        result = service.list_entities(products, params={"filters": {"name": "%"}})
        assert result.count_filtered == 0

    def test_filters_accept_json_string(self, products, service):
        result = service.list_entities(products, params={"filters": '{"category_id": 3}'})
        assert _names(result) == ["Doohickey"]

    def test_unknown_field(self, products, service):
        with pytest.raises(FilterValueError, match="Unknown filter field"):
            service.list_entities(products, params={"filters": {"colour": "red"}})

    def test_not_filterable(self, products, service):
        with pytest.raises(FilterValueError, match="not filterable"):
            service.list_entities(products, params={"filters": {"secret_cost": 1}})

    def test_value_must_match_type(self, products, service):
        with pytest.raises(FilterValueError):
            service.list_entities(products, params={"filters": {"category_id": "abc"}})

    def test_filter_type_must_fit_field(self, products, service):
        with pytest.raises(FilterValueError, match="not supported"):
            service.list_entities(
                products, params={"filters": {"active": {"type": "between", "value": [0, 1]}}}
            )

    def test_between_needs_two_values(self, products, service):
        with pytest.raises(FilterValueError):
            service.list_entities(products, params={"filters": {"price": {"type": "between", "value": [1]}}})


class TestSortErrors:
    def test_unknown_sort_field(self, products, service):
        with pytest.raises(SortFieldError):
            service.list_entities(products, params={"sorts": {"colour": "asc"}})

    def test_non_sortable_field(self, products, service):
        with pytest.raises(SortFieldError, match="not sortable"):
            service.list_entities(products, params={"sorts": {"category_id": "asc"}})

    def test_bad_direction(self, products, service):
        with pytest.raises(SortFieldError):
            service.list_entities(products, params={"sorts": {"name": "sideways"}})

    def test_bad_page(self, products, service):
        with pytest.raises(FilterValueError):
            service.list_entities(products, params={"page": -1})


class TestRelationshipListing:
    @pytest.fixture
    def seeded(self, service):
        users = service.entity("users")
        roles = service.entity("roles")
        permissions = service.entity("permissions")
        for name in ("alice", "bob"):
            service.create_entity(users, {"user_name": name})
        for slug in ("admin", "editor", "viewer"):
            service.create_entity(roles, {"slug": slug, "name": slug.title()})
        for slug in ("users.read", "users.write", "posts.read"):
            service.create_entity(permissions, {"slug": slug})
        service.attach_related(users, 1, "roles", [1, 2])
        service.attach_related(users, 2, "roles", [3])
        service.attach_related(roles, 1, "permissions", [1, 2, 3])
        service.attach_related(roles, 2, "permissions", [1, 3])
        service.attach_related(roles, 3, "permissions", [3])
        return users, roles

    def test_many_to_many(self, service, seeded):
        users, _ = seeded
        result = service.list_entities(users, "roles", 1, {"sorts": {"slug": "desc"}})
        assert [r["slug"] for r in result.rows] == ["editor", "admin"]
        assert result.count == 2

    def test_many_to_many_filters_related_columns(self, service, seeded):
        users, _ = seeded
        result = service.list_entities(users, "roles", 1, {"filters": {"slug": "edit"}})
        assert [r["id"] for r in result.rows] == [2]
        assert result.count == 2
        assert result.count_filtered == 1

    def test_through_is_distinct(self, service, seeded):
        users, _ = seeded
        result = service.list_entities(users, "permissions", 1, {"sorts": {"slug": "asc"}})
        assert [r["slug"] for r in result.rows] == ["posts.read", "users.read", "users.write"]
        assert result.count == 3

    def test_one_to_many_detail(self, service, products):
        categories = service.entity("categories")
        service.create_entity(categories, {"name": "Tools"})
        result = service.list_entities(categories, "products", 1)
        assert sorted(r["name"] for r in result.rows) == ["Gadget", "Widget A"]

    def test_undeclared_relation_falls_back_to_base_listing(self, service, seeded, caplog):
        users, _ = seeded
        result = service.list_entities(users, "groups", 1)
        assert [r["user_name"] for r in result.rows] == ["alice", "bob"]
        assert "not declared" in caplog.text

    def test_missing_parent(self, service, seeded):
        users, _ = seeded
        with pytest.raises(NotFoundError):
            service.list_entities(users, "roles", 99)

    def test_related_sort_is_validated_against_related_schema(self, service, seeded):
        users, _ = seeded
        with pytest.raises(SortFieldError):
            service.list_entities(users, "roles", 1, {"sorts": {"user_name": "asc"}})


class TestColumnQualification:
    """Every generated column reference names its table."""

    def test_predicates_survive_an_injected_join(self, service, products, db_engine):
        # Same column names as products: bare references would be ambiguous
        other = Table(
            "shadow",
            MetaData(),
            Column("id", Integer, primary_key=True),
            Column("name", String(50)),
            Column("price", Integer),
        )
        other.create(db_engine)
        with db_engine.begin() as conn:
            conn.execute(other.insert(), [{"id": 1, "name": "Widget A", "price": 1}])

        engine = service.engine
        request = QueryRequest(
            filters={"name": "widget", "price": {"type": "greater_than", "value": 1}},
            sorts={"price": "desc"},
            search="widget",
        )
        stmt = engine.base_select(products).join(other, other.c.id == products.column("id"))
        stmt = engine.apply_filters(stmt, products, request.filters)
        stmt = engine.apply_search(stmt, products, request.search)
        stmt = stmt.order_by(*engine.order_by(products, request.sorts))

        sql = str(stmt.compile(db_engine))
        assert "products.name" in sql
        assert "products.price" in sql
        assert "products.deleted_at" in sql

        with db_engine.connect() as conn:
            rows = conn.execute(stmt).all()
        assert len(rows) == 1

    def test_bare_names_would_be_ambiguous(self, service, products, db_engine):
        # Sanity check that the injected join really does collide
        other = Table("shadow2", MetaData(), Column("id", Integer), Column("name", String(50)))
        other.create(db_engine)

        with db_engine.connect() as conn, pytest.raises(OperationalError):
            conn.execute(
                text("SELECT products.id FROM products JOIN shadow2 ON shadow2.id = products.id WHERE name = 'x'")
            )

    def test_relationship_scope_is_qualified(self, service, products):
        categories = service.entity("categories")
        spec = service.resolver.resolve(categories, "products")
        assert isinstance(spec, OneToMany)
        stmt = service.resolver.scope(select(products.table), categories, spec, 1)
        assert "products.category_id" in str(stmt)
