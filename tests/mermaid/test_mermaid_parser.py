"""
Tests for the Mermaid ERD parser.
"""

import pytest

from formats.mermaid import MermaidParser, serialize, to_display_name
from shared.models import Cardinality
from fixtures import (
    SIMPLE_ERD,
    COMPACT_ERD,
    TYPED_ERD,
    LOOKUP_ERD,
    NOISY_ERD,
)


@pytest.fixture
def parser():
    return MermaidParser()


@pytest.mark.unit
class TestEntityParsing:
    """Entity blocks and attribute lines."""

    def test_parses_entities_in_source_order(self, parser):
        result = parser.parse(SIMPLE_ERD)

        assert result.entity_names == ["Customer", "Order"]
        assert result.warnings == []

    def test_primary_and_foreign_keys(self, parser):
        result = parser.parse(SIMPLE_ERD)

        customer = result.get_entity("Customer")
        order = result.get_entity("Order")
        assert [a.name for a in customer.primary_keys] == ["id"]
        assert customer.primary_keys[0].is_required
        assert [a.name for a in order.foreign_keys] == ["customer_id"]

    def test_compact_blocks_match_multiline_layout(self, parser):
        compact = parser.parse(COMPACT_ERD)
        expanded = parser.parse(SIMPLE_ERD)

        assert compact.to_dict()["entities"] == expanded.to_dict()["entities"]
        assert len(compact.relationships) == 1

    def test_types_constraints_and_descriptions(self, parser):
        product = parser.parse(TYPED_ERD).get_entity("Product")

        code = product.get_attribute("product_code")
        assert code.is_primary_key
        assert code.description == "Stock keeping unit"
        assert product.get_attribute("title").is_required
        assert product.get_attribute("external_id").is_unique
        assert product.get_attribute("external_id").type == "guid"
        assert product.get_attribute("price").type == "decimal"

    def test_display_names_are_derived(self, parser):
        product = parser.parse(TYPED_ERD).get_entity("Product")

        assert product.get_attribute("launched_on").display_name == "Launched On"
        assert to_display_name("OrderLine") == "Order Line"
        assert to_display_name("customer_id") == "Customer Id"

    def test_lookup_types(self, parser):
        task = parser.parse(LOOKUP_ERD).get_entity("Task")

        project = task.get_attribute("project")
        assert project.is_lookup
        assert project.target_entity == "Project"
        assert project.target_prefix is None

        resource = task.get_attribute("owner_resource")
        assert resource.target_entity == "Resource"
        assert resource.target_prefix == "msdyn"

    def test_inline_choice_options(self, parser):
        result = parser.parse("erDiagram\nTicket {\n string id PK\n choice(Low, High) urgency\n}")

        urgency = result.get_entity("Ticket").get_attribute("urgency")
        assert urgency.is_choice
        assert urgency.choice_options == ("Low", "High")

    def test_system_audit_fields_are_dropped(self, parser):
        result = parser.parse("erDiagram\nNote {\n string id PK\n datetime createdon\n}")

        assert result.get_entity("Note").get_attribute("createdon") is None
        assert any("createdon" in w.message for w in result.warnings)

    def test_system_fields_kept_when_requested(self):
        result = MermaidParser(ignore_system_fields=False).parse(
            "erDiagram\nNote {\n string id PK\n datetime createdon\n}"
        )

        assert result.get_entity("Note").get_attribute("createdon") is not None

    def test_duplicate_entity_blocks_merge(self, parser):
        result = parser.parse("erDiagram\nA {\n string id PK\n}\nA {\n string extra\n}")

        assert result.entity_names == ["A"]
        assert [a.name for a in result.get_entity("A").attributes] == ["id", "extra"]
        assert len(result.warnings) == 1

    def test_unclosed_block_is_reported(self, parser):
        result = parser.parse("erDiagram\nA {\n string id PK\n")

        assert result.entity_names == ["A"]
        assert any("not closed" in w.message for w in result.warnings)


@pytest.mark.unit
class TestRelationshipParsing:
    """Relationship lines and cardinality tokens."""

    @pytest.mark.parametrize("token,expected", [
        ("||--||", Cardinality.ONE_TO_ONE),
        ("||--o{", Cardinality.ONE_TO_MANY),
        ("}o--||", Cardinality.MANY_TO_ONE),
        ("}o--o{", Cardinality.MANY_TO_MANY),
    ])
    def test_cardinality_tokens(self, parser, token, expected):
        result = parser.parse(f"erDiagram\nA {token} B : links")

        assert result.relationships[0].cardinality == expected

    def test_relationship_fields(self, parser):
        rel = parser.parse(SIMPLE_ERD).relationships[0]

        assert rel.from_entity == "Customer"
        assert rel.to_entity == "Order"
        assert rel.name == "places"
        assert rel.key == "Customer->Order"

    def test_missing_label_gets_default_name(self, parser):
        rel = parser.parse("erDiagram\nA ||--o{ B").relationships[0]

        assert rel.name == "A_B"


@pytest.mark.unit
class TestParserRecovery:
    """Unrecognized input becomes warnings, never exceptions."""

    def test_noise_is_skipped_with_warnings(self, parser):
        result = parser.parse(NOISY_ERD)

        note = result.get_entity("Note")
        assert [a.name for a in note.attributes] == ["id", "body"]
        assert result.relationships == []
        assert len(result.warnings) == 4

    def test_unsupported_cardinality_warning(self, parser):
        result = parser.parse(NOISY_ERD)

        assert any("Unsupported cardinality" in w.message for w in result.warnings)

    @pytest.mark.parametrize("content", ["", "erDiagram", "%% only a comment", None])
    def test_empty_input(self, parser, content):
        result = parser.parse(content)

        assert result.entities == []
        assert result.relationships == []

    def test_parse_file_missing(self, parser, tmp_path):
        with pytest.raises(FileNotFoundError):
            parser.parse_file(str(tmp_path / "missing.mmd"))

    def test_parse_file(self, parser, temp_erd_file):
        assert parser.parse_file(temp_erd_file).entity_names == ["Customer", "Order"]


@pytest.mark.unit
class TestSerialize:
    """Canonical rendering back to diagram text."""

    def test_serialized_text_parses_to_same_model(self, parser):
        original = parser.parse(LOOKUP_ERD)

        reparsed = parser.parse(serialize(original))

        assert reparsed.to_dict()["entities"] == original.to_dict()["entities"]

    def test_constraint_order(self, parser):
        result = parser.parse('erDiagram\nA {\n string code UK NOT NULL "Code"\n}')

        assert 'string code UK, NOT NULL "Code"' in serialize(result)
