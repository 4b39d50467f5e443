"""Built-in AWS cost policies (COST001-COST006).

Cost results carry their money facts in ``metadata`` so remediation can
estimate the impact of a fix:

- ``estimated_monthly_cost``: what the flagged resource costs today
- ``estimated_savings`` / ``potential_savings``: what a fix would save
"""

import re

from iacguard.parser import (
    ParsedConfig,
    ResourceRecord,
    find_resources_by_type,
    get_bool,
    get_number,
    get_property,
    get_string,
)
from iacguard.pricing import EBS_PRICES, ebs_monthly_cost

from .aws_security import references
from .types import PolicyCategory, PolicyDefinition, PolicyResult, Severity

LARGE_INSTANCE = re.compile(r"\.(x?large|\d+xlarge)$")
VERY_LARGE_INSTANCE = re.compile(r"^(m5|m6i|c5|c6i|r5|r6i)\.(2xlarge|4xlarge|8xlarge)$")
NON_PROD_MARKERS = ("dev", "test", "staging", "qa", "demo", "sandbox")
PIOPS_SIZE_THRESHOLD_GB = 500
DEFAULT_VOLUME_SIZE_GB = 20


def _result(resource: ResourceRecord, message: str, suggestion: str, **kwargs) -> PolicyResult:
    return PolicyResult(
        resource_ref=resource.full_name,
        resource_type=resource.type,
        line=resource.start_line or None,
        message=message,
        suggestion=suggestion,
        **kwargs,
    )


def _volume_type(volume: ResourceRecord) -> str:
    return get_string(volume, "type") or "gp3"


def check_nat_gateway(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            nat,
            f'NAT Gateway "{nat.name}" costs ~$32/month plus data processing fees',
            "For non-production workloads, a NAT instance (t3.nano ~$3/month) can save "
            "$25-30/month per gateway",
            metadata={
                "estimated_monthly_cost": 32,
                "potential_savings": 29,
                "alternative_resource": "aws_instance with source_dest_check = false",
            },
        )
        for nat in find_resources_by_type(parsed, "aws_nat_gateway")
    ]


def check_oversized_instance(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []
    for instance in find_resources_by_type(parsed, "aws_instance"):
        instance_type = get_string(instance, "instance_type")
        if instance_type is None:
            continue
        if VERY_LARGE_INSTANCE.search(instance_type):
            size = "very large"
        elif LARGE_INSTANCE.search(instance_type):
            size = "large"
        else:
            continue
        results.append(_result(
            instance,
            f'Instance "{instance.name}" uses a {size} instance type ({instance_type})',
            "Start with a smaller instance and scale up based on measured usage",
            metadata={"current_instance_type": instance_type},
        ))
    return results


def check_multi_az(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []
    for rds in find_resources_by_type(parsed, "aws_db_instance"):
        if get_bool(rds, "multi_az") is not True:
            continue
        name = rds.name.lower()
        if any(marker in name for marker in NON_PROD_MARKERS):
            results.append(_result(
                rds,
                f'RDS instance "{rds.name}" has Multi-AZ enabled but appears to be non-production',
                "Multi-AZ doubles RDS cost. Disable it for dev/test databases",
                auto_fixable=True,
                metadata={"environment_indicator": name},
            ))
        else:
            results.append(_result(
                rds,
                f'RDS instance "{rds.name}" has Multi-AZ enabled (2x cost)',
                "Multi-AZ is recommended for production but doubles cost. "
                "Verify this is a production database",
            ))
    return results


def check_unattached_eip(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    associations = find_resources_by_type(parsed, "aws_eip_association")
    nat_gateways = find_resources_by_type(parsed, "aws_nat_gateway")
    results = []
    for eip in find_resources_by_type(parsed, "aws_eip"):
        if "instance" in eip.properties or "network_interface" in eip.properties:
            continue
        if any(references(get_property(a, "allocation_id"), eip) for a in associations):
            continue
        if any(references(get_property(n, "allocation_id"), eip) for n in nat_gateways):
            continue
        results.append(_result(
            eip,
            f'Elastic IP "{eip.name}" may not be associated with any resource',
            "Unassociated EIPs cost $3.65/month. Attach it to an instance or NAT Gateway",
            metadata={"monthly_cost": 3.65},
        ))
    return results


def check_gp2_volume(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []
    for volume in find_resources_by_type(parsed, "aws_ebs_volume"):
        if _volume_type(volume) != "gp2":
            continue
        size = get_number(volume, "size") or DEFAULT_VOLUME_SIZE_GB
        savings = round(size * (EBS_PRICES["gp2"] - EBS_PRICES["gp3"]), 2)
        results.append(_result(
            volume,
            f'EBS volume "{volume.name}" uses gp2; gp3 is ~20% cheaper with a higher baseline',
            'Change type = "gp2" to type = "gp3"',
            auto_fixable=True,
            metadata={"estimated_savings": savings, "size_gb": size},
        ))
    return results


def check_large_piops_volume(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []
    for volume in find_resources_by_type(parsed, "aws_ebs_volume"):
        volume_type = _volume_type(volume)
        if volume_type not in ("io1", "io2"):
            continue
        size = get_number(volume, "size") or DEFAULT_VOLUME_SIZE_GB
        if size <= PIOPS_SIZE_THRESHOLD_GB:
            continue
        iops = get_number(volume, "iops") or 0
        cost = round(ebs_monthly_cost(volume_type, size, iops), 2)
        results.append(_result(
            volume,
            f'EBS volume "{volume.name}" is a {size} GB {volume_type} volume costing ~${cost}/month',
            "Check whether gp3 with provisioned IOPS meets the workload at lower cost",
            metadata={"estimated_monthly_cost": cost, "size_gb": size, "iops": iops},
        ))
    return results


def _cost(code: str, name: str, description: str, severity: Severity, check) -> PolicyDefinition:
    return PolicyDefinition(
        code=code,
        name=name,
        description=description,
        category=PolicyCategory.COST,
        severity=severity,
        check=check,
        provider="aws",
    )


AWS_COST_POLICIES: tuple[PolicyDefinition, ...] = (
    _cost("COST001", "Consider NAT Instance for Cost Savings",
          "NAT Gateways cost ~$32/month plus data charges",
          Severity.MEDIUM, check_nat_gateway),
    _cost("COST002", "Potentially Oversized Instance",
          "Large instance types may be oversized for typical workloads",
          Severity.LOW, check_oversized_instance),
    _cost("COST003", "Multi-AZ Enabled (Verify if Needed)",
          "Multi-AZ deployments double RDS costs",
          Severity.MEDIUM, check_multi_az),
    _cost("COST004", "Elastic IP Association Check",
          "Unassociated Elastic IPs cost $3.65/month",
          Severity.LOW, check_unattached_eip),
    _cost("COST005", "Use gp3 Instead of gp2",
          "gp3 volumes cost less per GB than gp2",
          Severity.INFO, check_gp2_volume),
    _cost("COST006", "Large Provisioned-IOPS Volume",
          f"io1/io2 volumes above {PIOPS_SIZE_THRESHOLD_GB} GB are expensive",
          Severity.INFO, check_large_piops_volume),
)
