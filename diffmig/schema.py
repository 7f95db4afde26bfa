"""Registry schema definitions used to validate clinical records."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import SchemaParseError


@dataclass(frozen=True)
class FormDefinition:
    name: str
    sections: frozenset


@dataclass(frozen=True)
class SectionDefinition:
    code: str
    elements: tuple


@dataclass
class RegistrySchema:
    """
    Form and section definitions of a registry.

    Read-only once loaded. Entries use the registry definition export layout:

        forms:
          - fields: {name: "Demographics", sections: "SEC1, SEC2"}
        sections:
          - fields: {code: "SEC1", elements: "CDE1, CDE2"}

    Section and element lists may also be given as YAML lists.
    """
    forms: dict[str, FormDefinition] = field(default_factory=dict)
    sections: dict[str, SectionDefinition] = field(default_factory=dict)

    @classmethod
    def from_definition(cls, forms: list, sections: list) -> 'RegistrySchema':
        form_definitions = {}
        for index, entry in enumerate(forms):
            fields = _entry_fields(entry, index, "form")
            name = _entry_str(fields, "name", index, "form")
            form_definitions[name] = FormDefinition(
                name=name,
                sections=frozenset(_entry_list(fields, "sections", index, "form"))
            )

        section_definitions = {}
        for index, entry in enumerate(sections):
            fields = _entry_fields(entry, index, "section")
            code = _entry_str(fields, "code", index, "section")
            section_definitions[code] = SectionDefinition(
                code=code,
                elements=tuple(_entry_list(fields, "elements", index, "section"))
            )

        return cls(forms=form_definitions, sections=section_definitions)

    @classmethod
    def from_dict(cls, data: dict) -> 'RegistrySchema':
        if not isinstance(data, dict):
            raise SchemaParseError("Registry schema must be a mapping with forms and sections")
        forms = data.get('forms') or []
        sections = data.get('sections') or []
        if not isinstance(forms, list) or not isinstance(sections, list):
            raise SchemaParseError("Registry schema forms and sections must be lists")
        return cls.from_definition(forms, sections)

    @classmethod
    def from_file(cls, path: str) -> 'RegistrySchema':
        """Load a registry schema from a YAML or JSON file."""
        schema_path = Path(path)
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        with open(schema_path, 'r') as f:
            content = f.read()

        # JSON is valid YAML
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise SchemaParseError(f"Failed to parse schema file: {e}", reason=str(e))

        return cls.from_dict(data)


def _entry_fields(entry: Any, index: int, kind: str) -> dict:
    if not isinstance(entry, dict):
        raise SchemaParseError(f"Invalid {kind} definition", entry=index)
    fields = entry.get('fields')
    if not isinstance(fields, dict):
        raise SchemaParseError(f"Missing {kind} definition fields", entry=index)
    return fields


def _entry_str(fields: dict, key: str, index: int, kind: str) -> str:
    value = fields.get(key)
    if not isinstance(value, str):
        raise SchemaParseError(f"Missing {kind} {key}", entry=index, reason=repr(value))
    return value


def _entry_list(fields: dict, key: str, index: int, kind: str) -> list[str]:
    value = fields.get(key)
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list) and all(isinstance(item, str) for item in value):
        items = value
    else:
        raise SchemaParseError(f"Invalid {kind} {key}", entry=index, reason=repr(value))
    return [item.strip() for item in items if item.strip()]
