"""Cost analysis over parsed or live resources.

Every resource is listed in the breakdown, including free ones. A resource
whose pricing call fails is recorded at $0 with ``estimated=False`` rather
than dropped. Amounts are rounded to cents per resource, per service and
for the total.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable

import structlog

from iacguard.parser import ResourceRecord
from iacguard.pricing import AWSPricingService, PricingService

from .inventory import LiveResource

logger = structlog.get_logger()

UNESTIMATED_DESCRIPTION = "Unable to estimate cost"


@dataclass(frozen=True)
class ResourceCost:
    """Monthly estimate for one resource."""

    name: str
    type: str
    monthly_cost: float
    description: str
    estimated: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "monthly_cost": self.monthly_cost,
            "description": self.description,
            "estimated": self.estimated,
        }


@dataclass
class CostBreakdown:
    """Monthly cost estimate for a set of resources."""

    total_monthly: float = 0.0
    by_service: dict[str, float] = field(default_factory=dict)
    resources: list[ResourceCost] = field(default_factory=list)

    @property
    def unestimated(self) -> list[ResourceCost]:
        return [r for r in self.resources if not r.estimated]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_monthly": self.total_monthly,
            "by_service": self.by_service,
            "resources": [r.to_dict() for r in self.resources],
        }


def service_name(resource_type: str) -> str:
    """Map a resource type to the AWS service it is billed under."""
    t = resource_type
    if t in ("aws_instance", "ec2_instance", "aws_eip"):
        return "EC2"
    if t in ("aws_db_instance", "rds_instance"):
        return "RDS"
    if t in ("aws_lb", "aws_alb", "aws_nlb"):
        return "ELB"
    if t == "aws_nat_gateway":
        return "VPC"
    if t == "aws_cloudfront_distribution":
        return "CloudFront"
    if t == "aws_sqs_queue":
        return "SQS"
    if t == "aws_sns_topic":
        return "SNS"
    if t == "aws_kms_key":
        return "KMS"
    if t == "aws_secretsmanager_secret":
        return "Secrets Manager"

    for marker, name in (
        ("s3", "S3"),
        ("dynamodb", "DynamoDB"),
        ("lambda", "Lambda"),
        ("ecs", "ECS"),
        ("eks", "EKS"),
        ("elasticache", "ElastiCache"),
        ("route53", "Route 53"),
        ("api_gateway", "API Gateway"),
        ("apigateway", "API Gateway"),
        ("cloudwatch", "CloudWatch"),
        ("ebs", "EBS"),
    ):
        if marker in t:
            return name
    return "Other"


def describe_resource(resource_type: str, props: dict[str, Any]) -> str:
    """Short human description of what is being priced."""

    def text(key: str, default: str) -> str:
        value = props.get(key)
        return value if isinstance(value, str) and value else default

    def number(key: str, default: int) -> int | float:
        value = props.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        return default

    match resource_type:
        case "aws_instance" | "ec2_instance":
            return text("instance_type", "t3.micro")
        case "aws_db_instance" | "rds_instance":
            return f"{text('instance_class', 'db.t3.micro')} ({text('engine', 'postgres')})"
        case "aws_s3_bucket":
            return "S3 Bucket"
        case "aws_ebs_volume" | "ebs_volume":
            return f"{text('type', 'gp3')} {number('size', 20)} GB"
        case "aws_dynamodb_table":
            return f"DynamoDB Table ({text('billing_mode', 'PROVISIONED')})"
        case "aws_lb" | "aws_alb" | "aws_nlb":
            kind = "NLB" if text("load_balancer_type", "application") == "network" else "ALB"
            return f"{kind} Load Balancer"
        case "aws_nat_gateway":
            return "NAT Gateway"
        case "aws_eip":
            return "Elastic IP"
        case "aws_ecs_service":
            count = number("desired_count", 1)
            return f"ECS Service ({count} task{'s' if count > 1 else ''})"
        case "aws_eks_cluster":
            return "EKS Cluster"
        case "aws_elasticache_cluster":
            return f"ElastiCache {text('node_type', 'cache.t3.medium')} x{number('num_cache_nodes', 1)}"
        case "aws_cloudwatch_log_group":
            retention = number("retention_in_days", 0)
            if retention:
                return f"CloudWatch Log Group ({retention}d retention)"
            return "CloudWatch Log Group (no expiry)"
        case _:
            return resource_type


def _round(amount: float) -> float:
    return round(amount, 2)


class CostService:
    """Builds cost breakdowns through a pricing collaborator."""

    def __init__(self, pricing: PricingService | None = None):
        self.pricing = pricing or AWSPricingService()
        self._logger = logger.bind(component="CostService")

    async def _price(
        self,
        breakdown: CostBreakdown,
        name: str,
        resource_type: str,
        properties: dict[str, Any],
        region: str,
    ) -> None:
        try:
            cost = await self.pricing.estimate_monthly_cost(resource_type, properties, region)
            rounded = _round(float(cost))
            description = describe_resource(resource_type, properties)
        except Exception as e:
            await self._logger.awarning(
                "Pricing failed",
                resource=name,
                resource_type=resource_type,
                error=str(e),
            )
            breakdown.resources.append(ResourceCost(
                name=name,
                type=resource_type,
                monthly_cost=0.0,
                description=UNESTIMATED_DESCRIPTION,
                estimated=False,
            ))
            return

        service = service_name(resource_type)
        breakdown.by_service[service] = _round(breakdown.by_service.get(service, 0.0) + rounded)
        breakdown.total_monthly += rounded
        breakdown.resources.append(ResourceCost(
            name=name,
            type=resource_type,
            monthly_cost=rounded,
            description=(
                f"{description} (Free tier / request-based)" if rounded == 0 else description
            ),
        ))

    async def analyze_template_cost(
        self,
        resources: Iterable[ResourceRecord],
        region: str = "us-east-1",
    ) -> CostBreakdown:
        """Estimate monthly cost of parsed template resources.

        Args:
            resources: Parsed resources
            region: Region applied to every resource

        Returns:
            Breakdown listing every resource
        """
        breakdown = CostBreakdown()
        for resource in resources:
            await self._price(breakdown, resource.name, resource.type, resource.properties, region)
        breakdown.total_monthly = _round(breakdown.total_monthly)
        return breakdown

    async def analyze_live_resources(
        self,
        resources: Iterable[LiveResource],
        region: str = "us-east-1",
    ) -> CostBreakdown:
        """Estimate monthly cost of inventory resources, each in its own region."""
        breakdown = CostBreakdown()
        for resource in resources:
            await self._price(
                breakdown,
                resource.display_name,
                resource.resource_type,
                resource.metadata,
                resource.region or region,
            )
        breakdown.total_monthly = _round(breakdown.total_monthly)
        return breakdown

