"""Report Generator for audit results.

Renders one or more AuditResults as text, JSON, Markdown or SARIF.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from iacguard import __version__
from iacguard.policies import Severity

from .engine import AuditResult

logger = structlog.get_logger()

SARIF_LEVELS = {
    Severity.CRITICAL: "error",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "note",
    Severity.INFO: "note",
}

MARKDOWN_ICONS = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🔵",
    Severity.INFO: "⚪",
}


class ReportFormat(str, Enum):
    """Output format for reports."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"
    SARIF = "sarif"  # Static Analysis Results Interchange Format


@dataclass
class ReportSummary:
    """Totals across all audited templates."""

    total_templates: int = 0
    templates_passed: int = 0
    total_violations: int = 0
    average_score: float = 100.0
    monthly_cost: float = 0.0
    by_severity: dict[str, int] = field(default_factory=dict)
    by_policy: dict[str, int] = field(default_factory=dict)


@dataclass
class AuditReport:
    """Complete audit report."""

    timestamp: datetime
    summary: ReportSummary
    results: list[AuditResult]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        s = self.summary
        return {
            "timestamp": self.timestamp.isoformat(),
            "summary": {
                "total_templates": s.total_templates,
                "templates_passed": s.templates_passed,
                "total_violations": s.total_violations,
                "average_score": s.average_score,
                "monthly_cost": s.monthly_cost,
                "by_severity": s.by_severity,
                "by_policy": s.by_policy,
            },
            "results": [r.to_dict() for r in self.results],
            "metadata": self.metadata,
        }


def _label(result: AuditResult) -> str:
    return result.template_id or "template"


class ReportGenerator:
    """Generates audit reports in various formats."""

    def __init__(self):
        self._logger = logger.bind(component="ReportGenerator")

    def generate(
        self,
        results: list[AuditResult],
        format: ReportFormat = ReportFormat.TEXT,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Generate a report from audit results.

        Args:
            results: Audit results, one per template
            format: Output format
            metadata: Additional metadata to include

        Returns:
            Formatted report string
        """
        report = AuditReport(
            timestamp=datetime.now(timezone.utc),
            summary=self._build_summary(results),
            results=results,
            metadata=metadata or {},
        )

        match format:
            case ReportFormat.JSON:
                return json.dumps(report.to_dict(), indent=2)
            case ReportFormat.MARKDOWN:
                return self._format_markdown(report)
            case ReportFormat.SARIF:
                return self._format_sarif(report)
            case _:
                return self._format_text(report)

    def _build_summary(self, results: list[AuditResult]) -> ReportSummary:
        summary = ReportSummary(total_templates=len(results))

        for result in results:
            if result.total_issues == 0:
                summary.templates_passed += 1
            summary.total_violations += result.total_issues
            summary.monthly_cost += result.cost.total_monthly

            for group in result.violations:
                severity = group.severity.value
                summary.by_severity[severity] = summary.by_severity.get(severity, 0) + len(group.results)
                summary.by_policy[group.code] = summary.by_policy.get(group.code, 0) + len(group.results)

        if results:
            summary.average_score = round(sum(r.score for r in results) / len(results), 1)
        summary.monthly_cost = round(summary.monthly_cost, 2)
        return summary

    def _format_text(self, report: AuditReport) -> str:
        lines = []
        s = report.summary

        lines.append("=" * 60)
        lines.append("INFRASTRUCTURE AUDIT REPORT")
        lines.append("=" * 60)
        lines.append(f"Timestamp: {report.timestamp.isoformat()}")
        lines.append("")

        lines.append("SUMMARY")
        lines.append("-" * 40)
        lines.append(f"Templates:         {s.total_templates}")
        lines.append(f"Templates Passed:  {s.templates_passed}")
        lines.append(f"Total Violations:  {s.total_violations}")
        lines.append(f"Average Score:     {s.average_score}")
        lines.append(f"Monthly Cost:      ${s.monthly_cost:.2f}")
        lines.append("")

        if s.by_policy:
            lines.append("VIOLATIONS BY POLICY")
            lines.append("-" * 40)
            for code, count in sorted(s.by_policy.items()):
                lines.append(f"  {code}: {count}")
            lines.append("")

        lines.append("DETAILED RESULTS")
        lines.append("-" * 40)

        for result in report.results:
            status = "✓ PASS" if result.total_issues == 0 else "✗ FAIL"
            lines.append(f"\n{status} {_label(result)} (score {result.score}/100)")

            for group in result.violations:
                for v in group.results:
                    location = f":{v.line}" if v.line else ""
                    lines.append(
                        f"  [{group.severity.value}] {group.code} {v.resource_ref}{location}: {v.message}"
                    )
                    if v.suggestion:
                        lines.append(f"         Fix: {v.suggestion}")

            if result.failed_policies:
                lines.append(f"  Skipped (policy error): {', '.join(result.failed_policies)}")

        lines.append("")
        lines.append("=" * 60)
        return "\n".join(lines)

    def _format_markdown(self, report: AuditReport) -> str:
        lines = []
        s = report.summary

        lines.append("# Infrastructure Audit Report")
        lines.append("")
        lines.append(f"**Generated:** {report.timestamp.isoformat()}")
        lines.append("")

        lines.append("## Summary")
        lines.append("")
        lines.append("| Metric | Value |")
        lines.append("|--------|-------|")
        lines.append(f"| Templates | {s.total_templates} |")
        lines.append(f"| Templates Passed | {s.templates_passed} |")
        lines.append(f"| Total Violations | {s.total_violations} |")
        lines.append(f"| Average Score | {s.average_score} |")
        lines.append(f"| Monthly Cost | ${s.monthly_cost:.2f} |")
        lines.append("")

        if s.by_severity:
            lines.append("### Violations by Severity")
            lines.append("")
            for severity in Severity:
                if severity.value in s.by_severity:
                    lines.append(f"- **{severity.value}**: {s.by_severity[severity.value]}")
            lines.append("")

        lines.append("## Detailed Results")
        lines.append("")

        for result in report.results:
            status = "✅" if result.total_issues == 0 else "❌"
            lines.append(f"### {status} `{_label(result)}` ({result.score}/100)")
            lines.append("")

            if not result.violations:
                lines.append("No violations found.")
                lines.append("")
                continue

            lines.append("| Severity | Policy | Resource | Line | Message |")
            lines.append("|----------|--------|----------|------|---------|")
            for group in result.violations:
                icon = MARKDOWN_ICONS[group.severity]
                for v in group.results:
                    line = v.line or "-"
                    lines.append(
                        f"| {icon} {group.severity.value} | {group.code} | `{v.resource_ref}` | {line} | {v.message} |"
                    )
            lines.append("")

            fixable = [(g, v) for g, v in result.auto_fixable()]
            if fixable:
                lines.append("**Auto-fixable:**")
                lines.append("")
                for group, v in fixable:
                    lines.append(f"- `{group.code}` `{v.resource_ref}`: {v.suggestion}")
                lines.append("")

        return "\n".join(lines)

    def _format_sarif(self, report: AuditReport) -> str:
        """Format as SARIF 2.1.0 for code-scanning integrations."""
        sarif = {
            "$schema": "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json",
            "version": "2.1.0",
            "runs": [
                {
                    "tool": {
                        "driver": {
                            "name": "iacguard",
                            "version": __version__,
                            "rules": self._sarif_rules(report),
                        }
                    },
                    "results": self._sarif_results(report),
                }
            ],
        }
        return json.dumps(sarif, indent=2)

    def _sarif_rules(self, report: AuditReport) -> list[dict[str, Any]]:
        rules: dict[str, dict[str, Any]] = {}
        for result in report.results:
            for group in result.violations:
                if group.code in rules:
                    continue
                rules[group.code] = {
                    "id": group.code,
                    "name": group.name,
                    "shortDescription": {"text": group.name},
                    "properties": {"category": group.category.value},
                    "defaultConfiguration": {"level": SARIF_LEVELS[group.severity]},
                }
        return list(rules.values())

    def _sarif_results(self, report: AuditReport) -> list[dict[str, Any]]:
        results = []
        for audit in report.results:
            for group in audit.violations:
                for v in group.results:
                    entry: dict[str, Any] = {
                        "ruleId": group.code,
                        "level": SARIF_LEVELS[group.severity],
                        "message": {"text": v.message},
                        "locations": [
                            {
                                "physicalLocation": {
                                    "artifactLocation": {"uri": _label(audit)},
                                    "region": {"startLine": v.line or 1},
                                },
                                "logicalLocations": [{"fullyQualifiedName": v.resource_ref}],
                            }
                        ],
                    }
                    if v.suggestion:
                        entry["fixes"] = [{"description": {"text": v.suggestion}}]
                    results.append(entry)
        return results

    def save_report(
        self,
        results: list[AuditResult],
        output_path: str | Path,
        format: ReportFormat | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Generate and save a report, inferring the format from the extension."""
        path = Path(output_path)

        if format is None:
            format = {
                ".txt": ReportFormat.TEXT,
                ".json": ReportFormat.JSON,
                ".md": ReportFormat.MARKDOWN,
                ".sarif": ReportFormat.SARIF,
            }.get(path.suffix.lower(), ReportFormat.TEXT)

        path.write_text(self.generate(results, format, metadata))
        self._logger.info("Report saved", path=str(path), format=format.value)
