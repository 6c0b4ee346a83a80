"""
Probes for DNS, certificate and CDN resources that already exist for a domain.

Every lookup is independent and optional: a probe that fails is logged and
treated as "nothing found", since its only use is choosing a deploy branch.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import dns.exception
import dns.resolver
from botocore.exceptions import ClientError

from ..config import DEFAULT_REGION

logger = logging.getLogger(__name__)

# Resources tagged with this comment belong to our own stacks
CREATED_BY_NESS = "Created by Ness"
ACM_VALIDATION_SUFFIX = "acm-validations.aws."


@dataclass
class HostedZone:
    id: str
    name: Optional[str] = None


def _strip_dot(name: Optional[str]) -> str:
    return (name or "").rstrip(".").lower()


class ResourceDiscovery:
    """Looks up existing Route53, ACM and CloudFront resources for a domain."""

    def __init__(self, session, region: str = DEFAULT_REGION):
        self.route53 = session.client("route53", region_name=region)
        self.acm = session.client("acm", region_name=region)
        self.cloudfront = session.client("cloudfront", region_name=region)

    def get_hosted_zone(self, domain: str) -> Optional[HostedZone]:
        """
        Find a hosted zone for exactly this domain that our stacks did not create.

        Args:
            domain: Apex or subdomain, without trailing dot
        """
        try:
            response = self.route53.list_hosted_zones_by_name(DNSName=domain)
        except ClientError as e:
            logger.warning(f"Hosted zone lookup for {domain} failed: {e}")
            return None

        for zone in response.get("HostedZones", []):
            comment = (zone.get("Config") or {}).get("Comment")
            if zone.get("Name") == f"{domain}." and comment != CREATED_BY_NESS and zone.get("Id"):
                # Ids come back as /hostedzone/Z123
                return HostedZone(id=zone["Id"].split("/")[-1], name=zone.get("Name"))

        return None

    def get_record_sets(self, hosted_zone_id: str) -> Optional[List[Dict[str, Any]]]:
        try:
            paginator = self.route53.get_paginator("list_resource_record_sets")
            records = []
            for page in paginator.paginate(HostedZoneId=hosted_zone_id):
                records.extend(page.get("ResourceRecordSets", []))
            return records
        except ClientError as e:
            logger.warning(f"Listing records of hosted zone {hosted_zone_id} failed: {e}")
            return None

    def get_a_record(self, hosted_zone_id: str, domain: Optional[str]) -> Optional[Dict[str, Any]]:
        """The A record for `domain` in the zone, if any."""
        records = self.get_record_sets(hosted_zone_id)
        if not records:
            return None

        for record in records:
            if record.get("Type") == "A" and _strip_dot(record.get("Name")) == _strip_dot(domain):
                return record
        return None

    def delete_records(self, hosted_zone_id: str, records: List[Dict[str, Any]]) -> None:
        """Delete record sets. Errors propagate to the caller."""
        if not records:
            return

        changes = [{"Action": "DELETE", "ResourceRecordSet": record} for record in records]
        self.route53.change_resource_record_sets(
            HostedZoneId=hosted_zone_id,
            ChangeBatch={"Changes": changes},
        )
        logger.info(f"Deleted {len(records)} record(s) from hosted zone {hosted_zone_id}")

    def cleanup_validation_records(self, hosted_zone_id: str) -> int:
        """
        Remove CNAME records ACM created while validating a certificate.

        Returns:
            Number of records deleted
        """
        records = self.get_record_sets(hosted_zone_id)
        if not records:
            return 0

        targets = [
            record for record in records
            if record.get("Type") == "CNAME"
            and any(
                (value.get("Value") or "").endswith(ACM_VALIDATION_SUFFIX)
                for value in record.get("ResourceRecords", [])
            )
        ]
        self.delete_records(hosted_zone_id, targets)
        return len(targets)

    def get_distribution(self, domain: str) -> Optional[Dict[str, Any]]:
        """A CloudFront distribution (not ours) that already serves `domain` as an alias."""
        try:
            paginator = self.cloudfront.get_paginator("list_distributions")
            for page in paginator.paginate():
                for distribution in (page.get("DistributionList") or {}).get("Items", []):
                    aliases = (distribution.get("Aliases") or {}).get("Items", [])
                    if domain in aliases and distribution.get("Comment") != CREATED_BY_NESS:
                        return distribution
        except ClientError as e:
            logger.warning(f"Distribution lookup for {domain} failed: {e}")
        return None

    def get_certificate_arn(self, domain: str) -> Optional[str]:
        """ARN of an ISSUED certificate for exactly this domain."""
        try:
            paginator = self.acm.get_paginator("list_certificates")
            for page in paginator.paginate(CertificateStatuses=["ISSUED"]):
                for certificate in page.get("CertificateSummaryList", []):
                    if certificate.get("DomainName") == domain:
                        return certificate.get("CertificateArn")
        except ClientError as e:
            logger.warning(f"Certificate lookup for {domain} failed: {e}")
        return None

    def get_nameservers(self, hosted_zone_id: str) -> Optional[List[str]]:
        try:
            response = self.route53.get_hosted_zone(Id=hosted_zone_id)
        except ClientError as e:
            logger.warning(f"Could not read nameservers of {hosted_zone_id}: {e}")
            return None
        return (response.get("DelegationSet") or {}).get("NameServers")


def resolve_txt_records(domain: str, lifetime: float = 5.0) -> List[str]:
    """
    Resolve every TXT record string for a domain.

    Returns:
        Decoded TXT strings (empty if the domain has none)

    Raises:
        dns.exception.DNSException: For resolution failures other than no-answer
    """
    try:
        answer = dns.resolver.resolve(domain, "TXT", lifetime=lifetime)
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
        return []

    values = []
    for rdata in answer:
        values.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
    return values


def has_ownership_marker(records: List[str], marker: str) -> bool:
    marker = marker.lower()
    return any(marker in record.lower() for record in records)


