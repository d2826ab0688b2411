"""
Detect command: report which diagram entities are standard tables.
"""

import argparse
import json

from constants import ExitCode
from formats.cdm import CDMMatcher
from formats.mermaid import MermaidParser
from ..helpers import read_diagram, print_header, print_footer
from .base import BaseCommand


class DetectCommand(BaseCommand):
    """Match diagram entities against the standard table catalog."""

    def execute(self, args: argparse.Namespace) -> int:
        self.setup_logging_from_config(level=getattr(args, 'log_level', None))

        path, content = read_diagram(args.diagram)
        parse_result = MermaidParser().parse(content)
        detection = CDMMatcher().detect(parse_result.entities)

        if args.json:
            print(json.dumps(detection.to_dict(), indent=2))
            return ExitCode.SUCCESS

        summary = detection.summary
        print_header(f"Standard tables: {path.name}")
        print(f"Entities: {summary['totalEntities']}  "
              f"Standard: {summary['cdmMatches']}  "
              f"Custom: {summary['customEntities']}  "
              f"Confidence: {summary['confidenceLevel']}")
        for match in detection.matches:
            print(f"  {match.original_entity:<24} -> {match.cdm_entity.logical_name:<20} "
                  f"{match.match_type.value} ({match.confidence:.0%})")
        if detection.unmatched:
            print("\nCustom entities:")
            for entity in detection.unmatched:
                print(f"  {entity.name}")
        if detection.recommendations:
            print("\nRecommendations:")
            for rec in detection.recommendations:
                print(f"  - {rec['title']}: {rec['description']}")
        print_footer()
        return ExitCode.SUCCESS
