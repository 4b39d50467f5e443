"""Built-in AWS security policies (SEC001-SEC019).

Loosely aligned with the CIS AWS Foundations Benchmark. Every check is a
pure function over the parsed resources; the few checks that need text
outside a single attribute (IAM documents, hardcoded secrets) read the raw
block text instead.
"""

import re
from typing import Any

from iacguard.parser import (
    ParsedConfig,
    ResourceRecord,
    find_resources_by_type,
    get_bool,
    get_property,
    get_string,
    has_block,
)

from .types import (
    TEMPLATE_REF,
    PolicyCategory,
    PolicyDefinition,
    PolicyResult,
    Severity,
)

DANGEROUS_PORTS = (22, 3389, 3306, 5432, 27017, 6379)
WORLD_CIDRS = ("0.0.0.0/0", "::/0")

WILDCARD_ACTION = re.compile(r'"?Action"?\s*[:=]\s*(?:"\*"|\[\s*"\*"\s*\])')
WILDCARD_RESOURCE = re.compile(r'"?Resource"?\s*[:=]\s*(?:"\*"|\[\s*"\*"\s*\])')

SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r'password\s*=\s*"[^"$]+"'), "password"),
    (re.compile(r'secret_key\s*=\s*"[^"$]+"'), "secret_key"),
    (re.compile(r'api_key\s*=\s*"[^"$]+"'), "api_key"),
    (re.compile(r'access_key\s*=\s*"[^"$]+"'), "access_key"),
    (re.compile(r'secret\s*=\s*"[^"$]+"'), "secret"),
    (re.compile(r'private_key\s*=\s*"[^"$]+"'), "private_key"),
    (re.compile(r'token\s*=\s*"[^"$]+"'), "token"),
]
INDIRECT_VALUE_MARKERS = ("var.", "local.", "data.", '""')


def _result(resource: ResourceRecord, message: str, suggestion: str, **kwargs: Any) -> PolicyResult:
    return PolicyResult(
        resource_ref=resource.full_name,
        resource_type=resource.type,
        line=resource.start_line or None,
        message=message,
        suggestion=suggestion,
        **kwargs,
    )


def references(value: Any, target: ResourceRecord) -> bool:
    """Check whether an attribute value points at ``target``.

    Matches Terraform references (``aws_s3_bucket.logs.id``) and literal
    names equal to the target's own ``bucket``/``name`` attribute.
    """
    if not isinstance(value, str):
        return False
    if value == target.full_name or f"{target.full_name}." in value:
        return True
    for attr in ("bucket", "name"):
        literal = get_string(target, attr)
        if literal and value == literal:
            return True
    return False


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _blocks(resource: ResourceRecord, name: str) -> list[dict[str, Any]]:
    return [b for b in _as_list(resource.properties.get(name)) if isinstance(b, dict)]


def open_ports(rule: dict[str, Any], cidr_keys: tuple[str, ...], protocol_key: str = "protocol") -> list[int]:
    """Dangerous ports an ingress rule exposes to the whole internet."""
    cidrs: list[Any] = []
    for key in cidr_keys:
        cidrs.extend(_as_list(rule.get(key)))
    if not any(c in WORLD_CIDRS for c in cidrs):
        return []

    protocol = rule.get(protocol_key)
    if protocol in ("-1", "all", -1):
        return list(DANGEROUS_PORTS)

    from_port, to_port = rule.get("from_port"), rule.get("to_port")
    if isinstance(from_port, bool) or isinstance(to_port, bool):
        return []
    if not isinstance(from_port, int) or not isinstance(to_port, int):
        return []
    if from_port == 0 and to_port in (0, 65535):
        return list(DANGEROUS_PORTS)
    return [p for p in DANGEROUS_PORTS if from_port <= p <= to_port]


# ==================== Checks ====================


def check_s3_public_access(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    blocks = find_resources_by_type(parsed, "aws_s3_bucket_public_access_block")
    results = []
    for bucket in find_resources_by_type(parsed, "aws_s3_bucket"):
        if any(references(get_property(b, "bucket"), bucket) for b in blocks):
            continue
        results.append(_result(
            bucket,
            f'S3 bucket "{bucket.name}" does not have a public access block configured',
            f'Add an aws_s3_bucket_public_access_block resource for "{bucket.name}" with '
            "block_public_acls, block_public_policy, ignore_public_acls and "
            "restrict_public_buckets set to true",
            auto_fixable=True,
        ))
    return results


def check_security_group_open(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []

    def flag(resource: ResourceRecord, ports: list[int], kind: str) -> None:
        listed = ", ".join(str(p) for p in sorted(set(ports)))
        results.append(_result(
            resource,
            f'{kind} "{resource.name}" allows inbound traffic on port(s) {listed} from 0.0.0.0/0',
            "Restrict the CIDR block to specific IP ranges instead of 0.0.0.0/0",
            metadata={"ports": sorted(set(ports))},
        ))

    for sg in find_resources_by_type(parsed, "aws_security_group"):
        ports: list[int] = []
        for ingress in _blocks(sg, "ingress"):
            ports.extend(open_ports(ingress, ("cidr_blocks", "ipv6_cidr_blocks")))
        if ports:
            flag(sg, ports, "Security group")

    for rule in find_resources_by_type(parsed, "aws_security_group_rule"):
        if get_string(rule, "type") != "ingress":
            continue
        ports = open_ports(rule.properties, ("cidr_blocks", "ipv6_cidr_blocks"))
        if ports:
            flag(rule, ports, "Security group rule")

    for rule in find_resources_by_type(parsed, "aws_vpc_security_group_ingress_rule"):
        ports = open_ports(rule.properties, ("cidr_ipv4", "cidr_ipv6"), "ip_protocol")
        if ports:
            flag(rule, ports, "Security group rule")

    return results


def check_rds_public(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            rds,
            f'RDS instance "{rds.name}" is publicly accessible',
            "Set publicly_accessible = false to restrict access to your VPC",
            auto_fixable=True,
        )
        for rds in find_resources_by_type(parsed, "aws_db_instance")
        if get_bool(rds, "publicly_accessible") is True
    ]


def check_ebs_encryption(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []
    for volume in find_resources_by_type(parsed, "aws_ebs_volume"):
        if get_bool(volume, "encrypted") is not True:
            results.append(_result(
                volume,
                f'EBS volume "{volume.name}" is not encrypted',
                "Add encrypted = true to enable encryption at rest",
                auto_fixable=True,
            ))

    for instance in find_resources_by_type(parsed, "aws_instance"):
        if not has_block(instance, "root_block_device"):
            continue
        if get_bool(instance, "root_block_device.encrypted") is not True:
            results.append(_result(
                instance,
                f'EC2 instance "{instance.name}" has an unencrypted root block device',
                "Add encrypted = true inside the root_block_device block",
                auto_fixable=True,
            ))
    return results


def check_iam_wildcard(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []
    policies = find_resources_by_type(parsed, "aws_iam_policy") + find_resources_by_type(
        parsed, "aws_iam_role_policy"
    )
    for policy in policies:
        document = get_string(policy, "policy") or ""
        text = f"{policy.raw_text}\n{document}"
        wildcards = []
        if WILDCARD_ACTION.search(text):
            wildcards.append("Action")
        if WILDCARD_RESOURCE.search(text):
            wildcards.append("Resource")
        if wildcards:
            results.append(_result(
                policy,
                f'IAM policy "{policy.name}" uses wildcard (*) for {" and ".join(wildcards)}',
                "Specify explicit actions and resource ARNs instead of * to follow least privilege",
                metadata={"wildcards": wildcards},
            ))
    return results


def check_cloudtrail_enabled(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    if find_resources_by_type(parsed, "aws_cloudtrail"):
        return []
    return [PolicyResult(
        resource_ref=TEMPLATE_REF,
        resource_type="aws_cloudtrail",
        message="No aws_cloudtrail resource found. CloudTrail should be enabled for API auditing",
        suggestion="Add an aws_cloudtrail resource with is_multi_region_trail = true and enable_logging = true",
    )]


def check_cloudtrail_log_validation(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            trail,
            f'CloudTrail "{trail.name}" does not have log file validation enabled',
            "Add enable_log_file_validation = true to detect unauthorized log modifications",
            auto_fixable=True,
        )
        for trail in find_resources_by_type(parsed, "aws_cloudtrail")
        if get_bool(trail, "enable_log_file_validation") is not True
    ]


def check_vpc_flow_logs(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    flow_logs = find_resources_by_type(parsed, "aws_flow_log")
    results = []
    for vpc in find_resources_by_type(parsed, "aws_vpc"):
        if any(references(get_property(fl, "vpc_id"), vpc) for fl in flow_logs):
            continue
        results.append(_result(
            vpc,
            f'VPC "{vpc.name}" does not have flow logs enabled',
            f'Add an aws_flow_log resource referencing "{vpc.name}" to capture network traffic',
        ))
    return results


def check_s3_access_logging(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    logging_resources = find_resources_by_type(parsed, "aws_s3_bucket_logging")
    results = []
    for bucket in find_resources_by_type(parsed, "aws_s3_bucket"):
        if has_block(bucket, "logging"):
            continue
        if any(references(get_property(log, "bucket"), bucket) for log in logging_resources):
            continue
        results.append(_result(
            bucket,
            f'S3 bucket "{bucket.name}" does not have access logging configured',
            f'Add an aws_s3_bucket_logging resource for "{bucket.name}" with a target_bucket and target_prefix',
        ))
    return results


def check_default_sg_restrictive(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            sg,
            f'Default security group "{sg.name}" has ingress or egress rules. '
            "The default security group should restrict all traffic",
            "Remove all ingress and egress blocks from aws_default_security_group "
            "and use dedicated security groups instead",
        )
        for sg in find_resources_by_type(parsed, "aws_default_security_group")
        if "ingress" in sg.properties or "egress" in sg.properties
    ]


def check_subnet_public_ip(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            subnet,
            f'Subnet "{subnet.name}" auto-assigns public IP addresses to instances on launch',
            "Set map_public_ip_on_launch = false and use Elastic IPs or NAT Gateways "
            "for controlled internet access",
            auto_fixable=True,
        )
        for subnet in find_resources_by_type(parsed, "aws_subnet")
        if get_bool(subnet, "map_public_ip_on_launch") is True
    ]


def check_rds_encryption(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            rds,
            f'RDS instance "{rds.name}" does not have encryption at rest enabled',
            "Add storage_encrypted = true and optionally a kms_key_id for customer-managed encryption",
            auto_fixable=True,
        )
        for rds in find_resources_by_type(parsed, "aws_db_instance")
        if get_bool(rds, "storage_encrypted") is not True
    ]


def check_rds_deletion_protection(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            rds,
            f'RDS instance "{rds.name}" does not have deletion protection enabled',
            "Add deletion_protection = true to prevent accidental database deletion",
            auto_fixable=True,
        )
        for rds in find_resources_by_type(parsed, "aws_db_instance")
        if get_bool(rds, "deletion_protection") is not True
    ]


def check_dynamodb_encryption(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            table,
            f'DynamoDB table "{table.name}" does not have a server_side_encryption block configured',
            "Add a server_side_encryption block with enabled = true and a kms_key_arn",
            auto_fixable=True,
        )
        for table in find_resources_by_type(parsed, "aws_dynamodb_table")
        if not has_block(table, "server_side_encryption")
        or get_bool(table, "server_side_encryption.enabled") is False
    ]


def check_sns_encryption(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            topic,
            f'SNS topic "{topic.name}" does not have encryption enabled',
            "Add kms_master_key_id with a KMS key ARN or alias to enable server-side encryption",
        )
        for topic in find_resources_by_type(parsed, "aws_sns_topic")
        if not get_string(topic, "kms_master_key_id")
    ]


def check_sqs_encryption(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            queue,
            f'SQS queue "{queue.name}" does not have encryption enabled',
            "Add kms_master_key_id for KMS-managed encryption, or set "
            "sqs_managed_sse_enabled = true for SQS-managed encryption",
        )
        for queue in find_resources_by_type(parsed, "aws_sqs_queue")
        if not get_string(queue, "kms_master_key_id")
        and get_bool(queue, "sqs_managed_sse_enabled") is not True
    ]


def check_inline_iam_policies(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            policy,
            f'Inline IAM user policy "{policy.name}" found. Inline policies are harder '
            "to manage, audit and reuse",
            "Replace aws_iam_user_policy with aws_iam_user_policy_attachment referencing "
            "a managed aws_iam_policy",
        )
        for policy in find_resources_by_type(parsed, "aws_iam_user_policy")
    ]


def check_imdsv2_required(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    return [
        _result(
            instance,
            f'EC2 instance "{instance.name}" does not enforce IMDSv2. Without '
            'http_tokens = "required" the metadata service is exposed to SSRF',
            'Add a metadata_options block with http_tokens = "required" and '
            'http_endpoint = "enabled"',
            auto_fixable=True,
        )
        for instance in find_resources_by_type(parsed, "aws_instance")
        if get_string(instance, "metadata_options.http_tokens") != "required"
    ]


def check_hardcoded_secrets(parsed: ParsedConfig, raw_content: str) -> list[PolicyResult]:
    results = []
    for number, line in enumerate(raw_content.split("\n"), start=1):
        stripped = line.strip()
        if stripped.startswith(("#", "//", "/*")):
            continue
        if any(marker in stripped for marker in INDIRECT_VALUE_MARKERS):
            continue
        for pattern, label in SECRET_PATTERNS:
            if pattern.search(stripped):
                results.append(PolicyResult(
                    resource_ref=TEMPLATE_REF,
                    resource_type="hardcoded_secret",
                    line=number,
                    message=f"Potential hardcoded {label} on line {number}. "
                    "Secrets should never be stored in plain text",
                    suggestion=f"Use a variable (var.{label}), aws_secretsmanager_secret or "
                    "aws_ssm_parameter instead of a literal value",
                    metadata={"kind": label},
                ))
                break
    return results


# ==================== Definitions ====================


def _security(code: str, name: str, description: str, severity: Severity, check) -> PolicyDefinition:
    return PolicyDefinition(
        code=code,
        name=name,
        description=description,
        category=PolicyCategory.SECURITY,
        severity=severity,
        check=check,
        provider="aws",
    )


AWS_SECURITY_POLICIES: tuple[PolicyDefinition, ...] = (
    _security("SEC001", "S3 Bucket Public Access Blocked",
              "S3 buckets must have a public access block to prevent unintended exposure",
              Severity.CRITICAL, check_s3_public_access),
    _security("SEC002", "Security Group Not Open to World",
              "Security groups must not open SSH, RDP or database ports to 0.0.0.0/0",
              Severity.CRITICAL, check_security_group_open),
    _security("SEC003", "RDS Instance Not Publicly Accessible",
              "RDS instances must not be reachable from the internet",
              Severity.HIGH, check_rds_public),
    _security("SEC004", "EBS Volumes Encrypted",
              "EBS volumes and EC2 root devices must be encrypted at rest",
              Severity.HIGH, check_ebs_encryption),
    _security("SEC005", "IAM Policies No Wildcards",
              "IAM policies must not grant * actions or resources",
              Severity.HIGH, check_iam_wildcard),
    _security("SEC006", "CloudTrail Enabled",
              "A CloudTrail trail must log API activity for the account",
              Severity.HIGH, check_cloudtrail_enabled),
    _security("SEC007", "CloudTrail Log File Validation Enabled",
              "CloudTrail log file validation detects tampering",
              Severity.MEDIUM, check_cloudtrail_log_validation),
    _security("SEC008", "VPC Flow Logs Enabled",
              "Every VPC needs flow logs for network traffic monitoring",
              Severity.MEDIUM, check_vpc_flow_logs),
    _security("SEC009", "S3 Bucket Access Logging Enabled",
              "S3 buckets need server access logging for audits",
              Severity.MEDIUM, check_s3_access_logging),
    _security("SEC010", "Default Security Group Restricts All Traffic",
              "The default security group of a VPC must not allow any traffic",
              Severity.HIGH, check_default_sg_restrictive),
    _security("SEC011", "Subnets Do Not Auto-Assign Public IP",
              "Subnets must not hand out public IPs on launch",
              Severity.MEDIUM, check_subnet_public_ip),
    _security("SEC012", "RDS Encryption at Rest Enabled",
              "RDS storage must be encrypted",
              Severity.HIGH, check_rds_encryption),
    _security("SEC013", "RDS Deletion Protection Enabled",
              "RDS instances need deletion protection",
              Severity.MEDIUM, check_rds_deletion_protection),
    _security("SEC014", "DynamoDB Server-Side Encryption Enabled",
              "DynamoDB tables need server-side encryption with a KMS key",
              Severity.MEDIUM, check_dynamodb_encryption),
    _security("SEC015", "SNS Topic Encryption Enabled",
              "SNS topics must be encrypted with KMS",
              Severity.MEDIUM, check_sns_encryption),
    _security("SEC016", "SQS Queue Encryption Enabled",
              "SQS queues must use KMS or SQS-managed encryption",
              Severity.MEDIUM, check_sqs_encryption),
    _security("SEC017", "No Inline IAM User Policies",
              "Inline user policies are harder to audit than managed policies",
              Severity.MEDIUM, check_inline_iam_policies),
    _security("SEC018", "EC2 IMDSv2 Enforced",
              "EC2 instances must require IMDSv2 session tokens",
              Severity.HIGH, check_imdsv2_required),
    _security("SEC019", "No Hardcoded Secrets",
              "Passwords, keys and tokens must not be written as literals",
              Severity.CRITICAL, check_hardcoded_secrets),
)
