"""
Generate command: diagram to platform metadata document.
"""

import argparse
import logging
from dataclasses import dataclass
from typing import Optional

from constants import ExitCode
from core.schema import MetadataDocument, SchemaGenerator
from core.validators.input import InputValidator
from shared.models.metadata_types import CDMPolicy
from ..helpers import read_diagram, write_output, print_header, print_footer
from .base import BaseCommand, PreparedDiagram, prepare_diagram, print_validation_summary


logger = logging.getLogger(__name__)


@dataclass
class BuiltDocument:
    prepared: PreparedDiagram
    document: Optional[MetadataDocument] = None

    @property
    def blocked(self) -> bool:
        """Validation errors stopped generation."""
        return self.document is None


def build_document(
    content: str,
    prefix: str,
    cdm_policy: CDMPolicy = CDMPolicy.USE_CDM,
    detect_cdm: bool = True,
    fix: bool = False,
    force: bool = False,
) -> BuiltDocument:
    """
    Prepare a diagram and generate its metadata document.

    Generation is skipped when validation reports errors, unless ``force``.
    """
    InputValidator.validate_publisher_prefix(prefix)
    use_cdm = detect_cdm and cdm_policy == CDMPolicy.USE_CDM
    prepared = prepare_diagram(content, fix=fix, detect_cdm=use_cdm)

    if not prepared.validation.is_valid and not force:
        logger.error(f"Diagram has {prepared.validation.error_count} validation error(s); not generating")
        return BuiltDocument(prepared)

    generator = SchemaGenerator(prefix, cdm_policy=cdm_policy)
    document = generator.generate_from(prepared.parse_result, prepared.detection)
    logger.info(
        f"Generated {len(document.entities)} entities, {len(document.relationships)} relationships, "
        f"{len(document.cdm_entities)} standard tables"
    )
    return BuiltDocument(prepared, document)


def resolve_policy(args: argparse.Namespace, default: CDMPolicy = CDMPolicy.USE_CDM) -> CDMPolicy:
    if getattr(args, 'cdm_policy', None):
        return CDMPolicy(args.cdm_policy)
    return default


def print_document_summary(document: MetadataDocument) -> None:
    print_header("Metadata document")
    print(f"Entities:           {len(document.entities)}")
    print(f"Relationships:      {len(document.relationships)}")
    print(f"Lookup columns:     {len(document.additional_columns)}")
    print(f"Standard tables:    {len(document.cdm_entities)}")
    for diagram_name, logical in sorted(document.cdm_entities.items()):
        print(f"  {diagram_name} -> {logical}")
    if document.excluded_columns:
        print(f"Excluded columns:   {len(document.excluded_columns)}")
    for warning in document.warnings:
        print(f"  ⚠ {warning}")
    for error in document.errors:
        print(f"  ✗ {error}")
    print_footer()


class GenerateCommand(BaseCommand):
    """Generate the metadata document for a diagram."""

    def execute(self, args: argparse.Namespace) -> int:
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        path, content = read_diagram(args.diagram)
        built = build_document(
            content,
            prefix=args.prefix,
            cdm_policy=resolve_policy(args),
            detect_cdm=not args.no_cdm,
            fix=args.fix,
        )
        if built.blocked:
            print_validation_summary(built.prepared.validation, heading=f"Validation: {path.name}")
            return ExitCode.VALIDATION_ERROR

        document = built.document
        if args.output:
            written = write_output(args.output, document.to_json())
            print(f"✓ Metadata document written to {written}")
            print_document_summary(document)
        else:
            print(document.to_json())

        return ExitCode.SUCCESS if document.success else ExitCode.VALIDATION_ERROR
