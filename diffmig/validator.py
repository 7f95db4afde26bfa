"""Advisory validation of clinical records against a registry schema."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .models import ClinicalRecord, SectionLayout
from .schema import RegistrySchema


class FindingType(Enum):
    EXTRA_FORM = "EXTRA_FORM"
    MISSING_FORM = "MISSING_FORM"
    EXTRA_SECTION = "EXTRA_SECTION"
    MISSING_SECTION = "MISSING_SECTION"
    UNDEFINED_SECTION = "UNDEFINED_SECTION"
    EXTRA_CDE = "EXTRA_CDE"
    MISSING_CDE = "MISSING_CDE"


@dataclass
class ValidationFinding:
    """A single mismatch between a record and the registry schema."""
    type: FindingType
    form: str
    section: Optional[str] = None
    cde: Optional[str] = None
    instance: Optional[int] = None

    @property
    def message(self) -> str:
        if self.type == FindingType.EXTRA_FORM:
            return f"Clinical datum contains extra form: {self.form}"
        if self.type == FindingType.MISSING_FORM:
            return f"Clinical datum is missing form: {self.form}"
        if self.type == FindingType.EXTRA_SECTION:
            return f"Clinical datum's form {self.form} contains extra section: {self.section}"
        if self.type == FindingType.MISSING_SECTION:
            return f"Clinical datum's form {self.form} is missing section: {self.section}"
        if self.type == FindingType.UNDEFINED_SECTION:
            return f"Section definition {self.section} doesn't exist"

        section = self.section if self.instance is None else f"{self.section}[{self.instance}]"
        if self.type == FindingType.EXTRA_CDE:
            return f"Clinical datum's form {self.form} section {section} contains extra cde: {self.cde}"
        return f"Clinical datum's form {self.form} section {section} is missing cde: {self.cde}"

    def to_dict(self) -> dict:
        result = {"type": self.type.value, "form": self.form, "message": self.message}
        if self.section is not None:
            result["section"] = self.section
        if self.cde is not None:
            result["cde"] = self.cde
        if self.instance is not None:
            result["instance"] = self.instance
        return result


@dataclass
class ValidationReport:
    """Schema findings for one clinical record."""
    record_id: int
    findings: list[ValidationFinding] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.findings) == 0

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "is_valid": self.is_valid,
            "findings": [f.to_dict() for f in self.findings],
        }


class SchemaValidator:
    """
    Checks records against a registry schema.

    Findings are advisory, validation never raises on a mismatch and never
    blocks comparison.
    """

    def __init__(self, schema: RegistrySchema):
        self.schema = schema

    def validate(self, record: ClinicalRecord) -> ValidationReport:
        report = ValidationReport(record_id=record.id)
        findings = report.findings

        for form_name, form in record.forms.items():
            form_definition = self.schema.forms.get(form_name)
            if form_definition is None:
                findings.append(ValidationFinding(FindingType.EXTRA_FORM, form_name))
                continue

            for section_code, section in form.sections.items():
                if section_code not in form_definition.sections:
                    findings.append(ValidationFinding(FindingType.EXTRA_SECTION, form_name, section_code))
                    continue

                section_definition = self.schema.sections.get(section_code)
                if section_definition is None:
                    findings.append(ValidationFinding(FindingType.UNDEFINED_SECTION, form_name, section_code))
                    continue

                for index, cdes in enumerate(section.instances):
                    instance = index if section.layout == SectionLayout.MULTIPLE else None
                    for cde_code in cdes:
                        if cde_code not in section_definition.elements:
                            findings.append(ValidationFinding(
                                FindingType.EXTRA_CDE, form_name, section_code, cde_code, instance
                            ))
                    for cde_code in section_definition.elements:
                        if cde_code not in cdes:
                            findings.append(ValidationFinding(
                                FindingType.MISSING_CDE, form_name, section_code, cde_code, instance
                            ))

            for section_code in sorted(form_definition.sections):
                if section_code not in form.sections:
                    findings.append(ValidationFinding(FindingType.MISSING_SECTION, form_name, section_code))

        for form_name in self.schema.forms:
            if form_name not in record.forms:
                findings.append(ValidationFinding(FindingType.MISSING_FORM, form_name))

        return report
