#build_engine\infrastructure\aws\cloudfront.py

import logging
import time
from typing import Sequence

from botocore.exceptions import BotoCoreError, ClientError

from build_engine.core.clients import CdnProvider, DistributionConfig, DistributionInfo
from build_engine.core.errors import DistributionNotFound, QuotaExceededError
from build_engine.infrastructure.aws.session import error_code, reraise_transient

logger = logging.getLogger(__name__)

QUOTA_CODES = frozenset({"TooManyDistributions", "TooManyDistributionsAssociatedToOriginAccessControl"})
MISSING_CODES = frozenset({"NoSuchDistribution"})

# One day default, one year max
DEFAULT_TTL = 86400
MAX_TTL = 31536000
ERROR_CACHING_TTL = 300


def _distribution_body(config: DistributionConfig) -> dict:
    origin = {
        "Id": config.origin_id,
        "DomainName": config.origin_domain,
        "OriginPath": config.origin_path,
        "S3OriginConfig": {"OriginAccessIdentity": ""},
    }
    methods = {"Quantity": 2, "Items": ["GET", "HEAD"]}

    return {
        "CallerReference": config.caller_reference,
        "Comment": config.comment,
        "Enabled": True,
        "DefaultRootObject": config.default_root_object,
        "PriceClass": config.price_class,
        "Aliases": {"Quantity": len(config.aliases), "Items": list(config.aliases)},
        "Origins": {"Quantity": 1, "Items": [origin]},
        "DefaultCacheBehavior": {
            "TargetOriginId": config.origin_id,
            "ViewerProtocolPolicy": "redirect-to-https",
            "Compress": True,
            "MinTTL": 0,
            "DefaultTTL": DEFAULT_TTL,
            "MaxTTL": MAX_TTL,
            "AllowedMethods": {"Quantity": 2, "Items": ["GET", "HEAD"], "CachedMethods": methods},
            "ForwardedValues": {"QueryString": False, "Cookies": {"Forward": "none"}},
        },
        "CustomErrorResponses": {
            "Quantity": 2,
            "Items": [
                {
                    "ErrorCode": code,
                    "ResponsePagePath": "/index.html",
                    "ResponseCode": "200",
                    "ErrorCachingMinTTL": ERROR_CACHING_TTL,
                }
                for code in (403, 404)
            ],
        },
    }


class CloudFrontCdnProvider(CdnProvider):
    """CdnProvider backed by a CloudFront client."""

    def __init__(self, client, runtime: str = "cloudfront-js-2.0"):
        self.client = client
        self.runtime = runtime

    def create_distribution(self, config: DistributionConfig) -> DistributionInfo:
        try:
            response = self.client.create_distribution(DistributionConfig=_distribution_body(config))
        except (ClientError, BotoCoreError) as e:
            if isinstance(e, ClientError) and error_code(e) in QUOTA_CODES:
                raise QuotaExceededError(f"CloudFront distribution quota reached: {e}") from e
            reraise_transient(e, "create_distribution")
            raise

        distribution = response["Distribution"]
        logger.info(
            f"[cloudfront] ✅ created {distribution['Id']} "
            f"({distribution['DomainName']}, origin path {config.origin_path})"
        )
        return DistributionInfo(
            distribution_id=distribution["Id"],
            domain=distribution["DomainName"],
            status=distribution["Status"],
        )

    def get_distribution(self, distribution_id: str) -> DistributionInfo:
        try:
            response = self.client.get_distribution(Id=distribution_id)
        except (ClientError, BotoCoreError) as e:
            if isinstance(e, ClientError) and error_code(e) in MISSING_CODES:
                raise DistributionNotFound(distribution_id) from e
            reraise_transient(e, "get_distribution")
            raise

        distribution = response["Distribution"]
        return DistributionInfo(
            distribution_id=distribution["Id"],
            domain=distribution["DomainName"],
            status=distribution["Status"],
        )

    def create_invalidation(self, distribution_id: str, paths: Sequence[str]) -> str:
        try:
            response = self.client.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(paths), "Items": list(paths)},
                    "CallerReference": f"invalidation-{int(time.time() * 1000)}",
                },
            )
        except (ClientError, BotoCoreError) as e:
            if isinstance(e, ClientError) and error_code(e) in MISSING_CODES:
                raise DistributionNotFound(distribution_id) from e
            reraise_transient(e, "create_invalidation")
            raise

        invalidation_id = response["Invalidation"]["Id"]
        logger.info(f"[cloudfront] invalidation {invalidation_id} on {distribution_id}: {list(paths)}")
        return invalidation_id

    def publish_edge_function(self, name: str, code: str) -> str:
        function_config = {"Comment": "Tenant routing for the shared distribution", "Runtime": self.runtime}
        encoded = code.encode("utf-8")

        try:
            try:
                described = self.client.describe_function(Name=name, Stage="DEVELOPMENT")
            except ClientError as e:
                if error_code(e) != "NoSuchFunctionExists":
                    raise
                created = self.client.create_function(
                    Name=name, FunctionConfig=function_config, FunctionCode=encoded
                )
                etag = created["ETag"]
                logger.info(f"[cloudfront] created function {name}")
            else:
                updated = self.client.update_function(
                    Name=name,
                    IfMatch=described["ETag"],
                    FunctionConfig=function_config,
                    FunctionCode=encoded,
                )
                etag = updated["ETag"]
                logger.info(f"[cloudfront] updated function {name}")

            published = self.client.publish_function(Name=name, IfMatch=etag)
        except (ClientError, BotoCoreError) as e:
            reraise_transient(e, "publish_function")
            raise

        arn = published["FunctionSummary"]["FunctionMetadata"]["FunctionARN"]
        logger.info(f"[cloudfront] 🚀 published function {name} ({arn})")
        return arn
