"""
Global choice (option set) definitions.

Global choices are declared in the deployment configuration rather than in
the diagram. Option values default to ``100000000 + index``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from constants import DeploymentConfig
from shared.models.metadata_types import ODATA_OPTION_SET

from .attribute_metadata import label


@dataclass(frozen=True)
class ChoiceOption:
    label: str
    value: Optional[int] = None
    description: Optional[str] = None


@dataclass
class GlobalChoice:
    """A custom global choice to create."""
    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    options: List[ChoiceOption] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GlobalChoice':
        options = []
        for raw in data.get('options', []):
            if isinstance(raw, str):
                options.append(ChoiceOption(label=raw))
            else:
                options.append(ChoiceOption(
                    label=raw.get('label', ''),
                    value=raw.get('value'),
                    description=raw.get('description'),
                ))
        return cls(
            name=data.get('name', ''),
            display_name=data.get('display_name') or data.get('displayName'),
            description=data.get('description'),
            options=options,
        )

    def logical_name(self, prefix: str) -> str:
        return f"{prefix}_{self.name.lower()}"

    def option_values(self) -> List[int]:
        return [
            option.value if option.value is not None else DeploymentConfig.OPTION_VALUE_BASE + index
            for index, option in enumerate(self.options)
        ]

    def validation_errors(self) -> List[str]:
        errors = []
        if not self.name:
            errors.append("Global choice name is required")
        if not self.options:
            errors.append(f"Global choice '{self.name}' has no options")
        labels = [o.label.strip().lower() for o in self.options]
        if any(not text for text in labels):
            errors.append(f"Global choice '{self.name}' has an option without a label")
        if len(set(labels)) != len(labels):
            errors.append(f"Global choice '{self.name}' has duplicate option labels")
        values = self.option_values()
        if len(set(values)) != len(values):
            errors.append(f"Global choice '{self.name}' has duplicate option values")
        return errors

    def to_payload(self, prefix: str) -> Dict[str, Any]:
        """Body of ``POST GlobalOptionSetDefinitions``."""
        display = self.display_name or self.name
        return {
            "@odata.type": ODATA_OPTION_SET,
            "Name": self.logical_name(prefix),
            "DisplayName": label(display),
            "Description": label(self.description or f"Global choice {display}"),
            "IsGlobal": True,
            "OptionSetType": "Picklist",
            "Options": [
                {
                    "Value": value,
                    "Label": label(option.label),
                    "Description": label(option.description or option.label),
                }
                for option, value in zip(self.options, self.option_values())
            ],
        }
