#build_engine\infrastructure\aws\route53.py

import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from build_engine.core.clients import DnsClient
from build_engine.infrastructure.aws.session import reraise_transient

logger = logging.getLogger(__name__)

RECORD_TTL = 300


class Route53DnsClient(DnsClient):
    """CNAME upserts for tenant subdomains in one hosted zone."""

    def __init__(self, client, *, hosted_zone_id: Optional[str], base_domain: str, enabled: bool = True):
        self.client = client
        self.hosted_zone_id = hosted_zone_id
        self.base_domain = base_domain
        self.enabled = enabled and bool(hosted_zone_id)

    def create_or_update_subdomain(self, tenant_id: str, target: str) -> Optional[str]:
        if not self.enabled:
            logger.debug(f"[route53] DNS automation disabled, skipping {tenant_id}")
            return None

        record_name = f"{tenant_id}.{self.base_domain}"
        try:
            response = self.client.change_resource_record_sets(
                HostedZoneId=self.hosted_zone_id,
                ChangeBatch={
                    "Comment": f"Subdomain for tenant {tenant_id}",
                    "Changes": [{
                        "Action": "UPSERT",
                        "ResourceRecordSet": {
                            "Name": record_name,
                            "Type": "CNAME",
                            "TTL": RECORD_TTL,
                            "ResourceRecords": [{"Value": target}],
                        },
                    }],
                },
            )
        except (ClientError, BotoCoreError) as e:
            reraise_transient(e, "change_resource_record_sets")
            raise

        change_id = response["ChangeInfo"]["Id"]
        logger.info(f"[route53] ✅ {record_name} -> {target} ({change_id})")
        return change_id
