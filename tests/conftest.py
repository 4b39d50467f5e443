"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock

import pytest

from iacguard.agents import ChangePlanOrchestrator
from iacguard.audit import AuditEngine, CostService
from iacguard.config import Settings
from iacguard.parser import ConfigParser
from iacguard.policies import StaticPolicyActivation, default_registry
from iacguard.pricing import AWSPricingService
from iacguard.remediation import RemediationPlanner, SuggestedFix
from iacguard.store import InMemorySessionStore, InMemoryTemplateStore


# ==================== Sample templates ====================


@pytest.fixture
def bucket_only_template() -> str:
    """One S3 bucket and nothing else."""
    return '''resource "aws_s3_bucket" "data" {
  bucket = "my-data-bucket"
}
'''


@pytest.fixture
def gp2_volume_template() -> str:
    """An encrypted gp2 volume."""
    return '''resource "aws_ebs_volume" "data" {
  availability_zone = "us-east-1a"
  size              = 100
  type              = "gp2"
  encrypted         = true
}
'''


@pytest.fixture
def gp3_volume_template(gp2_volume_template: str) -> str:
    return gp2_volume_template.replace('"gp2"', '"gp3"')


@pytest.fixture
def bucket_and_volume_template() -> str:
    """A bucket (append fix) and an unencrypted volume (in-place fix)."""
    return '''resource "aws_s3_bucket" "logs" {
  bucket = "app-logs"
}

resource "aws_ebs_volume" "cache" {
  availability_zone = "us-east-1a"
  size              = 50
  type              = "gp3"
}
'''


@pytest.fixture
def volume_only_template() -> str:
    """Only in-place fixes are proposed for this template."""
    return '''resource "aws_ebs_volume" "scratch" {
  availability_zone = "us-east-1a"
  size              = 10
}
'''


@pytest.fixture
def insecure_template() -> str:
    """A template that trips most security and cost policies."""
    return '''provider "aws" {
  region = "us-east-1"
}

variable "environment" {
  default = "dev"
}

resource "aws_s3_bucket" "assets" {
  bucket = "company-assets"
}

resource "aws_security_group" "web" {
  name = "web"

  ingress {
    from_port   = 22
    to_port     = 22
    protocol    = "tcp"
    cidr_blocks = ["0.0.0.0/0"]
  }

  ingress {
    from_port   = 443
    to_port     = 443
    protocol    = "tcp"
    cidr_blocks = ["0.0.0.0/0"]
  }
}

resource "aws_db_instance" "dev_db" {
  engine              = "postgres"
  instance_class      = "db.t3.medium"
  allocated_storage   = 20
  publicly_accessible = true
  multi_az            = true
  password            = "hunter2hunter2"
}

resource "aws_instance" "app" {
  ami           = "ami-12345678"
  instance_type = "m5.2xlarge"

  root_block_device {
    volume_size = 30
  }
}

resource "aws_ebs_volume" "logs" {
  availability_zone = "us-east-1a"
  size              = 200
  type              = "gp2"
}

resource "aws_eip" "spare" {
  domain = "vpc"
}

output "bucket" {
  value = aws_s3_bucket.assets.id
}
'''


@pytest.fixture
def hardened_template() -> str:
    """A template that passes every security policy."""
    return '''resource "aws_s3_bucket" "data" {
  bucket = "hardened-data"

  logging {
    target_bucket = "audit-logs"
    target_prefix = "data/"
  }
}

resource "aws_s3_bucket_public_access_block" "data" {
  bucket = aws_s3_bucket.data.id

  block_public_acls       = true
  block_public_policy     = true
  ignore_public_acls      = true
  restrict_public_buckets = true
}

resource "aws_cloudtrail" "main" {
  name                       = "main"
  s3_bucket_name             = "audit-logs"
  enable_log_file_validation = true
  is_multi_region_trail      = true
}
'''


# ==================== Components ====================


@pytest.fixture
def settings() -> Settings:
    return Settings(ai_enabled=False, ai_timeout_seconds=0.05)


@pytest.fixture
def parser() -> ConfigParser:
    return ConfigParser()


@pytest.fixture
def audit_engine(settings: Settings) -> AuditEngine:
    return AuditEngine(
        registry=default_registry(),
        cost_service=CostService(AWSPricingService(settings)),
        activation=StaticPolicyActivation(),
        settings=settings,
    )


@pytest.fixture
def fake_suggester() -> AsyncMock:
    """A suggester whose fixes are plain appended comments."""
    suggester = AsyncMock()
    suggester.suggest_fix.return_value = SuggestedFix(
        before="",
        after="# reviewed by suggester",
        description="Suggested fix",
    )
    return suggester


@pytest.fixture
def planner(settings: Settings) -> RemediationPlanner:
    return RemediationPlanner(settings=settings)


@pytest.fixture
def template_store() -> InMemoryTemplateStore:
    return InMemoryTemplateStore()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def orchestrator(
    template_store: InMemoryTemplateStore,
    session_store: InMemorySessionStore,
    audit_engine: AuditEngine,
    planner: RemediationPlanner,
    settings: Settings,
) -> ChangePlanOrchestrator:
    return ChangePlanOrchestrator(
        template_store=template_store,
        session_store=session_store,
        audit_engine=audit_engine,
        planner=planner,
        settings=settings,
    )
