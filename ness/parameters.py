"""
Parameter maps for the domain, web and alias stacks, and the output keys the
choreography reads back from them.
"""

from typing import Dict, Optional

from .settings import NessSettings

# Stack outputs
OUTPUT_STACK_NAME = "StackName"
OUTPUT_HOSTED_ZONE_ID = "HostedZoneId"
OUTPUT_BUCKET_NAME = "BucketName"
OUTPUT_DISTRIBUTION_ID = "DistributionId"
OUTPUT_DISTRIBUTION_DOMAIN_NAME = "DistributionDomainName"
OUTPUT_URL = "URL"

# CloudFront price classes: every edge location, or North America and Europe only
PRICE_CLASS_ALL = "PriceClass_All"
PRICE_CLASS_100 = "PriceClass_100"

# Edge functions CloudFront replicates; they cannot be deleted right away
EDGE_FUNCTIONS = ("ViewerRequestFunction", "OriginResponseFunction")


def _www(settings: NessSettings) -> Optional[str]:
    return "www." if settings.redirect_www else None


def web_parameters(settings: NessSettings, certificate_arn: Optional[str] = None,
                   include_alias: bool = False) -> Dict[str, Optional[str]]:
    """
    Parameters for the web stack.

    Args:
        settings: Site settings
        certificate_arn: Issued certificate for the custom domain, if any
        include_alias: Attach the custom domain to the distribution
    """
    return {
        "DomainName": settings.domain,
        "RedirectSubDomainNameWithDot": _www(settings),
        "DefaultRootObject": settings.index_document,
        "DefaultErrorObject": settings.index_document if settings.spa else settings.error_document,
        "DefaultErrorResponseCode": "200" if settings.spa else "404",
        "ExistingCertificate": certificate_arn,
        "IncludeCloudFrontAlias": "true" if include_alias else "false",
        "ContentSecurityPolicy": settings.csp if settings.csp and settings.csp != "auto" else None,
        "PriceClass": PRICE_CLASS_ALL if settings.prod else PRICE_CLASS_100,
    }


def domain_parameters(domain: str, existing_hosted_zone_id: Optional[str] = None) -> Dict[str, Optional[str]]:
    return {
        "Name": domain,
        "ExistingHostedZoneId": existing_hosted_zone_id,
    }


def alias_parameters(settings: NessSettings, domain_stack: str, web_stack: str) -> Dict[str, Optional[str]]:
    return {
        "DomainStack": domain_stack,
        "WebStack": web_stack,
        "RedirectSubDomainNameWithDot": _www(settings),
    }
