"""
Unit tests for TableDependencyResolver.

Tests cover:
- Principals ordered before dependents
- Determinism and priority-list tie breaking
- Tables missing from metadata
- Cycle handling (lenient and strict)
- Lookup built from SQLAlchemy metadata
"""

import logging

import pytest
from sqlalchemy import Column, ForeignKey, Integer, MetaData, Table

from tablemigrator.exceptions import DependencyCycleError
from tablemigrator.resolver import TableDependencyResolver, metadata_foreign_key_lookup


def lookup_from(graph: dict[str, list[str]]):
    return graph.get


class TestOrdering:
    """Tests for dependency ordering."""

    def test_chain_resolves_principal_first(self) -> None:
        """Test A <- B <- C resolves to A, B, C regardless of priority order."""
        graph = {"A": [], "B": ["A"], "C": ["B"]}
        order = TableDependencyResolver().resolve(["C", "B", "A"], lookup_from(graph))
        assert order.names == ("A", "B", "C")

    def test_every_principal_precedes_its_dependents(self) -> None:
        """Test index(principal) < index(dependent) for a wider acyclic graph."""
        graph = {
            "clients": [],
            "aliases": ["clients"],
            "alias_links": ["aliases", "clients"],
            "servers": [],
            "kills": ["clients", "servers", "maps"],
            "maps": [],
            "penalties": ["clients"],
            "penalty_identifiers": ["penalties", "alias_links"],
        }
        priority = list(reversed(list(graph)))
        order = TableDependencyResolver().resolve(priority, lookup_from(graph))

        assert set(order.names) == set(graph)
        for table, principals in graph.items():
            for principal in principals:
                assert order.index_of(principal) < order.index_of(table)

    def test_ties_follow_priority_list(self) -> None:
        """Test independent tables keep their priority-list order."""
        graph = {"x": [], "y": [], "z": []}
        order = TableDependencyResolver().resolve(["z", "x", "y"], lookup_from(graph))
        assert order.names == ("z", "x", "y")

    def test_resolution_is_deterministic(self) -> None:
        """Test resolving the same graph twice gives the same order."""
        graph = {"A": [], "B": ["A"], "C": ["A", "B"], "D": ["C"], "E": []}
        priority = ["E", "D", "C", "B", "A"]
        resolver = TableDependencyResolver()
        assert resolver.resolve(priority, lookup_from(graph)) == resolver.resolve(
            priority, lookup_from(graph)
        )

    def test_descriptors_carry_dependencies(self) -> None:
        """Test each TableDescriptor lists its principals."""
        graph = {"A": [], "B": ["A"]}
        order = TableDependencyResolver().resolve(["A", "B"], lookup_from(graph))
        assert order.get("B").dependencies == frozenset({"A"})
        assert order.get("A").dependencies == frozenset()

    def test_principal_outside_priority_list_is_placed(self) -> None:
        """Test a referenced table not in the priority list is still migrated first."""
        graph = {"orders": ["customers"], "customers": []}
        order = TableDependencyResolver().resolve(["orders"], lookup_from(graph))
        assert order.names == ("customers", "orders")


class TestMissingTables:
    """Tests for tables absent from the schema metadata."""

    def test_unknown_table_is_skipped(self) -> None:
        """Test a table the lookup does not know is left out without error."""
        graph = {"A": [], "B": ["A"]}
        order = TableDependencyResolver().resolve(["A", "ghost", "B"], lookup_from(graph))
        assert order.names == ("A", "B")
        assert "ghost" not in order

    def test_unknown_principal_is_skipped(self) -> None:
        """Test a dependent of an unknown table is still placed."""
        graph = {"B": ["ghost"]}
        order = TableDependencyResolver().resolve(["B"], lookup_from(graph))
        assert order.names == ("B",)


class TestCycles:
    """Tests for circular foreign key references."""

    def test_self_reference_is_not_a_cycle(self) -> None:
        """Test a self-referencing table resolves normally in strict mode."""
        graph = {"employees": ["employees"]}
        order = TableDependencyResolver(strict=True).resolve(["employees"], lookup_from(graph))
        assert order.names == ("employees",)
        assert order.get("employees").dependencies == frozenset()

    def test_cycle_drops_edge_and_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        """Test a cycle places every table once and logs the dropped edge."""
        graph = {"A": ["B"], "B": ["A"]}
        with caplog.at_level(logging.WARNING, logger="tablemigrator.resolver"):
            order = TableDependencyResolver().resolve(["A", "B"], lookup_from(graph))

        assert order.names == ("B", "A")
        assert "Circular foreign key reference A -> B -> A" in caplog.text

    def test_strict_mode_raises_on_cycle(self) -> None:
        """Test strict resolution raises DependencyCycleError with the path."""
        graph = {"A": ["C"], "B": ["A"], "C": ["B"]}
        with pytest.raises(DependencyCycleError) as exc_info:
            TableDependencyResolver(strict=True).resolve(["A", "B", "C"], lookup_from(graph))
        assert exc_info.value.path == ("A", "C", "B", "A")


class TestMetadataLookup:
    """Tests for metadata_foreign_key_lookup."""

    @pytest.fixture
    def metadata(self) -> MetaData:
        metadata = MetaData()
        Table("users", metadata, Column("id", Integer, primary_key=True))
        Table(
            "posts",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("author_id", ForeignKey("users.id")),
            Column("parent_id", ForeignKey("posts.id")),
        )
        Table(
            "comments",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("post_id", ForeignKey("posts.id")),
            Column("user_id", ForeignKey("users.id")),
        )
        return metadata

    def test_lookup_reports_principals(self, metadata: MetaData) -> None:
        """Test principals are reported in column order, deduplicated."""
        lookup = metadata_foreign_key_lookup(metadata)
        assert lookup("comments") == ["posts", "users"]
        assert lookup("posts") == ["users", "posts"]
        assert lookup("users") == []

    def test_lookup_returns_none_for_unknown_table(self, metadata: MetaData) -> None:
        """Test an undefined table yields None."""
        assert metadata_foreign_key_lookup(metadata)("ghost") is None

    def test_resolves_metadata_order(self, metadata: MetaData) -> None:
        """Test resolving metadata tables in reverse definition order."""
        order = TableDependencyResolver().resolve(
            ["comments", "posts", "users"],
            metadata_foreign_key_lookup(metadata),
        )
        assert order.names == ("users", "posts", "comments")
