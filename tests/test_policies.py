"""Tests for the policy registry and the built-in AWS policies."""

import pytest

from iacguard.config import Settings
from iacguard.parser import parse
from iacguard.policies import (
    TEMPLATE_REF,
    PolicyCategory,
    PolicyDefinition,
    PolicyRegistry,
    SettingsPolicyActivation,
    Severity,
    StaticPolicyActivation,
    default_registry,
)


def run(code: str, content: str):
    """Run one built-in policy against configuration text."""
    policy = default_registry().get(code)
    parsed = parse(content)
    return policy.check(parsed, parsed.raw_content)


def noop_check(parsed, raw_content):
    return []


class TestPolicyRegistry:
    """Tests for registry construction and lookup."""

    def test_default_registry_contents(self):
        registry = default_registry()

        assert len(registry) == 25
        assert registry.codes()[0] == "SEC001"
        assert registry.codes()[-1] == "COST006"
        assert len(registry.by_category(PolicyCategory.SECURITY)) == 19
        assert len(registry.by_category(PolicyCategory.COST)) == 6

    def test_default_registry_is_shared(self):
        assert default_registry() is default_registry()

    def test_lookup(self):
        registry = default_registry()

        assert "SEC004" in registry
        assert registry.get("SEC004").severity == Severity.HIGH
        assert registry.get("NOPE") is None

    def test_duplicate_codes_rejected(self):
        policy = PolicyDefinition(
            code="X001",
            name="Dummy",
            description="",
            category=PolicyCategory.SECURITY,
            severity=Severity.LOW,
            check=noop_check,
        )

        with pytest.raises(ValueError, match="X001"):
            PolicyRegistry([policy, policy])

    def test_with_policies_returns_new_registry(self):
        base = default_registry()
        extra = PolicyDefinition(
            code="CUSTOM001",
            name="Custom",
            description="",
            category=PolicyCategory.COMPLIANCE,
            severity=Severity.INFO,
            check=noop_check,
        )

        extended = base.with_policies(extra)

        assert "CUSTOM001" in extended
        assert "CUSTOM001" not in base
        assert len(extended) == len(base) + 1

    def test_get_active_filters_provider_and_activation(self):
        registry = default_registry()

        assert registry.get_active("azure") == []
        active = registry.get_active("aws", StaticPolicyActivation({"SEC001", "COST005"}))
        codes = [p.code for p in active]
        assert "SEC001" not in codes
        assert "COST005" not in codes
        assert len(codes) == len(registry) - 2

    def test_provider_all_applies_everywhere(self):
        policy = PolicyDefinition(
            code="ANY001",
            name="Any",
            description="",
            category=PolicyCategory.RELIABILITY,
            severity=Severity.LOW,
            check=noop_check,
            provider="all",
        )

        assert policy.applies_to("aws")
        assert policy.applies_to("gcp")

    def test_settings_activation(self):
        activation = SettingsPolicyActivation(Settings(disabled_policies=["SEC009"]))

        assert not activation.is_enabled("SEC009")
        assert activation.is_enabled("SEC001")


class TestSecurityPolicies:
    """Tests for SEC001-SEC019."""

    def test_s3_public_access_missing(self, bucket_only_template: str):
        results = run("SEC001", bucket_only_template)

        assert len(results) == 1
        assert results[0].resource_ref == "aws_s3_bucket.data"
        assert results[0].auto_fixable
        assert results[0].line == 1

    def test_s3_public_access_present(self, hardened_template: str):
        assert run("SEC001", hardened_template) == []

    def test_s3_public_access_matched_by_literal_name(self):
        content = '''resource "aws_s3_bucket" "data" {
  bucket = "my-data-bucket"
}

resource "aws_s3_bucket_public_access_block" "data" {
  bucket = "my-data-bucket"
}
'''
        assert run("SEC001", content) == []

    def test_security_group_open_ports(self, insecure_template: str):
        results = run("SEC002", insecure_template)

        assert len(results) == 1
        assert results[0].resource_ref == "aws_security_group.web"
        assert results[0].metadata["ports"] == [22]

    def test_security_group_all_protocols(self):
        content = '''resource "aws_security_group_rule" "all" {
  type        = "ingress"
  protocol    = "-1"
  from_port   = 0
  to_port     = 0
  cidr_blocks = ["0.0.0.0/0"]
}
'''
        results = run("SEC002", content)

        assert results[0].metadata["ports"] == sorted([22, 3389, 3306, 5432, 27017, 6379])

    def test_security_group_private_cidr_passes(self):
        content = '''resource "aws_security_group" "internal" {
  ingress {
    from_port   = 22
    to_port     = 22
    protocol    = "tcp"
    cidr_blocks = ["10.0.0.0/8"]
  }
}
'''
        assert run("SEC002", content) == []

    def test_rds_public_and_unencrypted(self, insecure_template: str):
        assert [r.resource_ref for r in run("SEC003", insecure_template)] == [
            "aws_db_instance.dev_db"
        ]
        assert len(run("SEC012", insecure_template)) == 1
        assert len(run("SEC013", insecure_template)) == 1

    def test_ebs_encryption(self, insecure_template: str):
        refs = [r.resource_ref for r in run("SEC004", insecure_template)]

        assert refs == ["aws_ebs_volume.logs", "aws_instance.app"]

    def test_ebs_encryption_string_true_is_not_encrypted(self):
        content = '''resource "aws_ebs_volume" "v" {
  encrypted = "true"
}
'''
        assert len(run("SEC004", content)) == 1

    def test_iam_wildcard(self):
        content = '''resource "aws_iam_policy" "admin" {
  policy = <<EOF
{
  "Statement": [{"Effect": "Allow", "Action": "*", "Resource": "*"}]
}
EOF
}
'''
        results = run("SEC005", content)

        assert len(results) == 1
        assert results[0].metadata["wildcards"] == ["Action", "Resource"]

    def test_cloudtrail_missing_is_template_level(self, bucket_only_template: str):
        results = run("SEC006", bucket_only_template)

        assert len(results) == 1
        assert results[0].resource_ref == TEMPLATE_REF
        assert not results[0].auto_fixable

    def test_cloudtrail_validation(self):
        content = '''resource "aws_cloudtrail" "main" {
  name = "main"
}
'''
        assert run("SEC006", content) == []
        assert len(run("SEC007", content)) == 1

    def test_vpc_flow_logs(self):
        content = '''resource "aws_vpc" "main" {
  cidr_block = "10.0.0.0/16"
}

resource "aws_vpc" "other" {
  cidr_block = "10.1.0.0/16"
}

resource "aws_flow_log" "main" {
  vpc_id = aws_vpc.main.id
}
'''
        assert [r.resource_ref for r in run("SEC008", content)] == ["aws_vpc.other"]

    def test_s3_access_logging(self, bucket_only_template: str, hardened_template: str):
        assert len(run("SEC009", bucket_only_template)) == 1
        assert run("SEC009", hardened_template) == []

    def test_default_security_group(self):
        content = '''resource "aws_default_security_group" "default" {
  vpc_id = aws_vpc.main.id

  ingress {
    protocol  = -1
    self      = true
    from_port = 0
    to_port   = 0
  }
}
'''
        assert len(run("SEC010", content)) == 1

    def test_subnet_public_ip(self):
        content = '''resource "aws_subnet" "public" {
  map_public_ip_on_launch = true
}
'''
        results = run("SEC011", content)

        assert len(results) == 1
        assert results[0].auto_fixable

    def test_dynamodb_encryption(self):
        content = '''resource "aws_dynamodb_table" "users" {
  name     = "users"
  hash_key = "id"
}

resource "aws_dynamodb_table" "orders" {
  name = "orders"

  server_side_encryption {
    enabled = true
  }
}
'''
        assert [r.resource_ref for r in run("SEC014", content)] == ["aws_dynamodb_table.users"]

    def test_sns_and_sqs_encryption(self):
        content = '''resource "aws_sns_topic" "alerts" {
  name = "alerts"
}

resource "aws_sqs_queue" "jobs" {
  name = "jobs"
}

resource "aws_sqs_queue" "managed" {
  name                    = "managed"
  sqs_managed_sse_enabled = true
}
'''
        assert len(run("SEC015", content)) == 1
        assert [r.resource_ref for r in run("SEC016", content)] == ["aws_sqs_queue.jobs"]

    def test_inline_iam_user_policy(self):
        content = '''resource "aws_iam_user_policy" "inline" {
  name = "inline"
  user = "bob"
}
'''
        assert len(run("SEC017", content)) == 1

    def test_imdsv2(self, insecure_template: str):
        content = '''resource "aws_instance" "ok" {
  metadata_options {
    http_tokens = "required"
  }
}
'''
        assert [r.resource_ref for r in run("SEC018", insecure_template)] == ["aws_instance.app"]
        assert run("SEC018", content) == []

    def test_hardcoded_secrets(self):
        content = '''resource "aws_db_instance" "db" {
  password = "hunter2hunter2"
  # password = "commented-out"
}

resource "aws_db_instance" "db2" {
  password = var.db_password
}
'''
        results = run("SEC019", content)

        assert len(results) == 1
        assert results[0].line == 2
        assert results[0].metadata == {"kind": "password"}
        assert results[0].resource_ref == TEMPLATE_REF


class TestCostPolicies:
    """Tests for COST001-COST006."""

    def test_nat_gateway(self):
        content = '''resource "aws_nat_gateway" "main" {
  subnet_id = aws_subnet.public.id
}
'''
        results = run("COST001", content)

        assert results[0].metadata["potential_savings"] == 29

    def test_oversized_instance(self, insecure_template: str):
        results = run("COST002", insecure_template)

        assert len(results) == 1
        assert "very large" in results[0].message
        assert results[0].metadata["current_instance_type"] == "m5.2xlarge"

    def test_small_instance_passes(self):
        content = '''resource "aws_instance" "small" {
  instance_type = "t3.micro"
}
'''
        assert run("COST002", content) == []

    def test_multi_az_non_prod_is_fixable(self, insecure_template: str):
        results = run("COST003", insecure_template)

        assert len(results) == 1
        assert results[0].auto_fixable

    def test_multi_az_prod_is_advisory(self):
        content = '''resource "aws_db_instance" "orders" {
  multi_az = true
}
'''
        results = run("COST003", content)

        assert len(results) == 1
        assert not results[0].auto_fixable

    def test_unattached_eip(self, insecure_template: str):
        associated = '''resource "aws_eip" "nat" {
  domain = "vpc"
}

resource "aws_nat_gateway" "main" {
  allocation_id = aws_eip.nat.id
}
'''
        assert [r.resource_ref for r in run("COST004", insecure_template)] == ["aws_eip.spare"]
        assert run("COST004", associated) == []

    def test_gp2_volume(self, gp2_volume_template: str, gp3_volume_template: str):
        results = run("COST005", gp2_volume_template)

        assert len(results) == 1
        assert results[0].metadata["estimated_savings"] == 2.0
        assert results[0].auto_fixable
        assert run("COST005", gp3_volume_template) == []

    def test_untyped_volume_defaults_to_gp3(self, volume_only_template: str):
        assert run("COST005", volume_only_template) == []

    def test_large_piops_volume(self):
        content = '''resource "aws_ebs_volume" "db" {
  size = 1000
  type = "io1"
  iops = 5000
}
'''
        results = run("COST006", content)

        assert len(results) == 1
        assert results[0].metadata["size_gb"] == 1000
        assert results[0].metadata["estimated_monthly_cost"] > 0
