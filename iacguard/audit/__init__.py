"""Audit pipeline for Terraform configuration.

- Audit Engine: runs active policies and scores the result
- Cost Service: prices every resource through a pricing collaborator
- Inventory: live-account resources fed through the same path
- Report Generator: text, JSON, Markdown and SARIF output
"""

from .cost import CostBreakdown, CostService, ResourceCost, service_name
from .engine import (
    SEVERITY_WEIGHTS,
    AuditEngine,
    AuditResult,
    AuditSummary,
    PolicyViolations,
    compute_score,
    violation_key,
)
from .inventory import LiveResource, to_parsed_config
from .reporter import AuditReport, ReportFormat, ReportGenerator, ReportSummary

__all__ = [
    # Cost
    "CostBreakdown",
    "CostService",
    "ResourceCost",
    "service_name",
    # Engine
    "SEVERITY_WEIGHTS",
    "AuditEngine",
    "AuditResult",
    "AuditSummary",
    "PolicyViolations",
    "compute_score",
    "violation_key",
    # Inventory
    "LiveResource",
    "to_parsed_config",
    # Reporter
    "AuditReport",
    "ReportFormat",
    "ReportGenerator",
    "ReportSummary",
]
