"""AWS on-demand pricing.

Prices come from a static catalog (us-east-1 baseline) scaled by region
and, for RDS, by engine. Unknown instance types fall back to a size-based
heuristic. Lookups are memoized in a TTL cache.
"""

import time
from typing import Any, Protocol

import structlog

from iacguard.config import Settings, get_settings
from iacguard.errors import PricingError

logger = structlog.get_logger()

HOURS_IN_MONTH = 730

REGION_MULTIPLIERS: dict[str, float] = {
    "us-east-1": 1.0,
    "us-east-2": 1.0,
    "us-west-1": 1.05,
    "us-west-2": 1.02,
    "ca-central-1": 1.04,
    "eu-west-1": 1.05,
    "eu-west-2": 1.07,
    "eu-west-3": 1.08,
    "eu-central-1": 1.06,
    "eu-north-1": 1.05,
    "ap-southeast-1": 1.10,
    "ap-southeast-2": 1.12,
    "ap-northeast-1": 1.15,
    "ap-northeast-2": 1.12,
    "ap-northeast-3": 1.15,
    "ap-south-1": 1.08,
    "sa-east-1": 1.20,
    "me-south-1": 1.12,
    "af-south-1": 1.14,
}

# Hourly, us-east-1
EC2_PRICES: dict[str, float] = {
    "t3.nano": 0.0052, "t3.micro": 0.0104, "t3.small": 0.0208, "t3.medium": 0.0416,
    "t3.large": 0.0832, "t3.xlarge": 0.1664, "t3.2xlarge": 0.3328,
    "t3a.nano": 0.0047, "t3a.micro": 0.0094, "t3a.small": 0.0188, "t3a.medium": 0.0376,
    "t3a.large": 0.0752, "t3a.xlarge": 0.1504, "t3a.2xlarge": 0.3008,
    "t4g.nano": 0.0042, "t4g.micro": 0.0084, "t4g.small": 0.0168, "t4g.medium": 0.0336,
    "t4g.large": 0.0672, "t4g.xlarge": 0.1344, "t4g.2xlarge": 0.2688,
    "m5.large": 0.096, "m5.xlarge": 0.192, "m5.2xlarge": 0.384,
    "m6i.large": 0.096, "m6i.xlarge": 0.192, "m6i.2xlarge": 0.384,
    "m6g.large": 0.077, "m6g.xlarge": 0.154, "m6g.2xlarge": 0.308,
    "m7g.large": 0.0816, "m7g.xlarge": 0.1632, "m7g.2xlarge": 0.3264,
    "c5.large": 0.085, "c5.xlarge": 0.17, "c5.2xlarge": 0.34,
    "c6i.large": 0.085, "c6i.xlarge": 0.17, "c6i.2xlarge": 0.34,
    "c6g.large": 0.068, "c6g.xlarge": 0.136, "c6g.2xlarge": 0.272,
    "c7g.large": 0.0725, "c7g.xlarge": 0.145, "c7g.2xlarge": 0.29,
    "r5.large": 0.126, "r5.xlarge": 0.252, "r5.2xlarge": 0.504,
    "r6i.large": 0.126, "r6i.xlarge": 0.252, "r6i.2xlarge": 0.504,
    "r6g.large": 0.1008, "r6g.xlarge": 0.2016, "r6g.2xlarge": 0.4032,
}

RDS_PRICES: dict[str, float] = {
    "db.t3.micro": 0.017, "db.t3.small": 0.034, "db.t3.medium": 0.068,
    "db.t3.large": 0.136, "db.t3.xlarge": 0.272, "db.t3.2xlarge": 0.544,
    "db.t4g.micro": 0.016, "db.t4g.small": 0.032, "db.t4g.medium": 0.065,
    "db.t4g.large": 0.129, "db.t4g.xlarge": 0.258, "db.t4g.2xlarge": 0.516,
    "db.m5.large": 0.115, "db.m5.xlarge": 0.230, "db.m5.2xlarge": 0.460,
    "db.m6g.large": 0.105, "db.m6g.xlarge": 0.210, "db.m6g.2xlarge": 0.420,
    "db.r5.large": 0.145, "db.r5.xlarge": 0.290, "db.r5.2xlarge": 0.580,
    "db.r6g.large": 0.130, "db.r6g.xlarge": 0.260, "db.r6g.2xlarge": 0.520,
}

RDS_ENGINE_MULTIPLIERS: dict[str, float] = {
    "mysql": 1.0,
    "mariadb": 1.0,
    "postgres": 1.08,
    "aurora-mysql": 1.15,
    "aurora-postgresql": 1.18,
    "oracle-ee": 2.8,
    "oracle-se2": 1.6,
    "sqlserver-ee": 3.2,
    "sqlserver-se": 1.9,
    "sqlserver-ex": 1.0,
    "sqlserver-web": 1.2,
}

ELASTICACHE_PRICES: dict[str, float] = {
    "cache.t3.micro": 0.017, "cache.t3.small": 0.034, "cache.t3.medium": 0.068,
    "cache.t4g.micro": 0.016, "cache.t4g.small": 0.032, "cache.t4g.medium": 0.065,
    "cache.m5.large": 0.124, "cache.m5.xlarge": 0.248,
    "cache.m6g.large": 0.113, "cache.m6g.xlarge": 0.226,
    "cache.r5.large": 0.166, "cache.r5.xlarge": 0.332,
    "cache.r6g.large": 0.150, "cache.r6g.xlarge": 0.300,
}

# Per GB-month
EBS_PRICES: dict[str, float] = {
    "gp3": 0.08,
    "gp2": 0.10,
    "io1": 0.125,
    "io2": 0.125,
    "st1": 0.045,
    "sc1": 0.015,
    "standard": 0.05,
}
EBS_IOPS_PRICE = 0.065
RDS_STORAGE_PRICE = 0.115
DYNAMODB_STORAGE_PRICE = 0.25

SIZE_MULTIPLIERS: dict[str, float] = {
    "nano": 0.25,
    "micro": 0.5,
    "small": 1,
    "medium": 2,
    "large": 4,
    "xlarge": 8,
    "2xlarge": 16,
    "4xlarge": 32,
    "8xlarge": 64,
    "12xlarge": 96,
    "16xlarge": 128,
    "24xlarge": 192,
}

# Flat monthly baselines for resources without capacity settings
FLAT_MONTHLY: dict[str, float] = {
    "aws_s3_bucket": 0.50,
    "aws_eip": 3.65,
    "aws_cloudfront_distribution": 1.0,
    "aws_ecs_cluster": 0.0,
    "aws_eks_cluster": 0.10 * HOURS_IN_MONTH,
    "aws_route53_zone": 0.50,
    "aws_api_gateway_rest_api": 3.50,
    "aws_apigatewayv2_api": 3.50,
    "aws_sqs_queue": 0.0,
    "aws_sns_topic": 0.0,
    "aws_kms_key": 1.0,
    "aws_secretsmanager_secret": 0.40,
    "aws_cloudwatch_log_group": 0.50,
    "aws_lambda_function": 0.0,
}


def region_multiplier(region: str) -> float:
    return REGION_MULTIPLIERS.get(region, 1.0)


def engine_multiplier(engine: str | None) -> float:
    normalized = (engine or "mysql").lower().strip()
    return RDS_ENGINE_MULTIPLIERS.get(normalized, 1.0)


def ebs_monthly_cost(volume_type: str, size_gb: float, iops: float | None = None) -> float:
    """Monthly cost of an EBS volume in us-east-1."""
    cost = size_gb * EBS_PRICES.get(volume_type, EBS_PRICES["gp3"])
    if volume_type in ("io1", "io2") and iops:
        cost += iops * EBS_IOPS_PRICE
    return cost


class PricingService(Protocol):
    """Collaborator that prices one resource."""

    async def estimate_monthly_cost(
        self,
        resource_type: str,
        properties: dict[str, Any],
        region: str,
    ) -> float:
        ...


class PriceCache:
    """In-memory TTL cache for hourly prices."""

    def __init__(self, ttl_seconds: float = 900.0):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, float]] = {}

    def get(self, key: str) -> float | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: float) -> None:
        self._entries[key] = (value, time.monotonic() + self.ttl_seconds)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _text(props: dict[str, Any], *keys: str, default: str) -> str:
    for key in keys:
        value = props.get(key)
        if isinstance(value, str) and value:
            return value
    return default


def _number(props: dict[str, Any], *keys: str, default: float) -> float:
    for key in keys:
        value = props.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            if value < 0:
                raise PricingError(f"{key} must not be negative", key=key, value=value)
            return value
    return default


class AWSPricingService:
    """Static-catalog pricing for AWS resource types."""

    def __init__(self, settings: Settings | None = None, cache: PriceCache | None = None):
        settings = settings or get_settings()
        self.cache = cache or PriceCache(settings.price_cache_ttl_seconds)
        self._logger = logger.bind(component="AWSPricingService")

    def _cached(self, key: str, compute) -> float:
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        value = compute()
        self.cache.set(key, value)
        return value

    def ec2_hourly(self, instance_type: str, region: str) -> float:
        """Hourly price of an EC2 instance type."""

        def compute() -> float:
            base = EC2_PRICES.get(instance_type)
            if base is None:
                size = instance_type.split(".")[1] if "." in instance_type else "large"
                base = 0.012 * SIZE_MULTIPLIERS.get(size, 4)
                self._logger.debug("Heuristic EC2 price", instance_type=instance_type, hourly=base)
            return base * region_multiplier(region)

        return self._cached(f"ec2:{instance_type}:{region}", compute)

    def rds_hourly(self, instance_class: str, engine: str, region: str) -> float:
        """Hourly price of an RDS instance class for an engine."""

        def compute() -> float:
            base = RDS_PRICES.get(instance_class, 0.10)
            return base * region_multiplier(region) * engine_multiplier(engine)

        return self._cached(f"rds:{instance_class}:{engine}:{region}", compute)

    def elasticache_hourly(self, node_type: str, region: str) -> float:
        def compute() -> float:
            return ELASTICACHE_PRICES.get(node_type, 0.068) * region_multiplier(region)

        return self._cached(f"elasticache:{node_type}:{region}", compute)

    async def estimate_monthly_cost(
        self,
        resource_type: str,
        properties: dict[str, Any],
        region: str = "us-east-1",
    ) -> float:
        """Estimate the monthly on-demand cost of one resource.

        Args:
            resource_type: Terraform type, e.g. ``aws_instance``
            properties: Parsed (or inventory) properties of the resource
            region: AWS region used for the regional multiplier

        Returns:
            Estimated USD per month (0 for request-priced or unknown types)

        Raises:
            PricingError: If the properties cannot be priced
        """
        if not isinstance(properties, dict):
            raise PricingError(
                f"Properties for {resource_type} must be a mapping",
                resource_type=resource_type,
            )
        p = properties

        match resource_type:
            case "aws_instance" | "ec2_instance":
                instance_type = _text(p, "instance_type", "instanceType", default="t3.micro")
                return self.ec2_hourly(instance_type, region) * HOURS_IN_MONTH

            case "aws_db_instance" | "rds_instance":
                instance_class = _text(p, "instance_class", "instanceClass", default="db.t3.micro")
                engine = _text(p, "engine", default="postgres")
                storage = _number(p, "allocated_storage", "allocatedStorage", default=20)
                hourly = self.rds_hourly(instance_class, engine, region)
                monthly = hourly * HOURS_IN_MONTH
                if p.get("multi_az") is True:
                    monthly *= 2
                return monthly + storage * RDS_STORAGE_PRICE

            case "aws_ebs_volume" | "ebs_volume":
                volume_type = _text(p, "type", "volume_type", "volumeType", default="gp3")
                size = _number(p, "size", default=20)
                iops = _number(p, "iops", default=0)
                return ebs_monthly_cost(volume_type, size, iops) * region_multiplier(region)

            case "aws_dynamodb_table" | "dynamodb_table":
                if _text(p, "billing_mode", "billingMode", default="PROVISIONED") == "PAY_PER_REQUEST":
                    return 1.25
                wcu = _number(p, "write_capacity", default=5)
                rcu = _number(p, "read_capacity", default=5)
                return (wcu * 0.00065 + rcu * 0.00013) * HOURS_IN_MONTH + DYNAMODB_STORAGE_PRICE

            case "aws_lb" | "aws_alb" | "aws_nlb":
                return 0.0225 * HOURS_IN_MONTH + 5.0

            case "aws_nat_gateway":
                return 0.045 * HOURS_IN_MONTH + 10 * 0.045

            case "aws_ecs_service":
                tasks = _number(p, "desired_count", "desiredCount", default=1)
                per_task_hourly = 0.25 * 0.04048 + 0.5 * 0.004445
                return tasks * per_task_hourly * HOURS_IN_MONTH

            case "aws_elasticache_cluster":
                node_type = _text(p, "node_type", "nodeType", default="cache.t3.medium")
                nodes = _number(p, "num_cache_nodes", "numCacheNodes", default=1)
                return self.elasticache_hourly(node_type, region) * HOURS_IN_MONTH * nodes

            case "aws_elasticache_replication_group":
                node_type = _text(p, "node_type", "nodeType", default="cache.t3.medium")
                clusters = _number(p, "num_cache_clusters", "number_cache_clusters", default=2)
                return self.elasticache_hourly(node_type, region) * HOURS_IN_MONTH * clusters

            case _:
                return FLAT_MONTHLY.get(resource_type, 0.0)
