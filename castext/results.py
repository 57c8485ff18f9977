"""Result of expanding a CASText template."""

from typing import List, Optional

from pydantic import BaseModel, Field

from .validation import Issue, ValidationReport


class ExpansionResult(BaseModel):
    """Expanded display text plus the validation verdict.

    When the template failed to parse, ``display`` is the raw template and
    only the parse errors are reported.
    """

    display: str = ""
    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    issues: List[Issue] = Field(default_factory=list)

    @classmethod
    def from_report(cls, display: str, report: ValidationReport) -> "ExpansionResult":
        return cls(
            display=display,
            valid=report.valid,
            errors=report.errors,
            warnings=report.warnings,
            issues=list(report.issues),
        )

    def render_errors(self, html: bool = False) -> Optional[str]:
        """The error banner, or None when nothing went wrong."""
        return ValidationReport(issues=list(self.issues)).render(html=html)

    def __str__(self):
        return self.display
