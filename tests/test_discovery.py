"""
Tests for resource discovery probes.
"""

from unittest.mock import Mock, patch

import dns.resolver
import pytest
from botocore.exceptions import ClientError

from ness.aws.discovery import ResourceDiscovery, has_ownership_marker, resolve_txt_records


def paginator(*pages):
    mock = Mock()
    mock.paginate.return_value = list(pages)
    return mock


@pytest.fixture
def clients():
    return {"route53": Mock(), "acm": Mock(), "cloudfront": Mock()}


@pytest.fixture
def discovery(clients):
    session = Mock()
    session.client.side_effect = lambda name, region_name=None: clients[name]
    return ResourceDiscovery(session, "us-east-1")


class TestHostedZones:
    """Test hosted zone lookup."""

    def test_exact_match_not_created_by_us(self, discovery, clients):
        clients["route53"].list_hosted_zones_by_name.return_value = {
            "HostedZones": [
                {"Id": "/hostedzone/ZOURS", "Name": "example.com.", "Config": {"Comment": "Created by Ness"}},
                {"Id": "/hostedzone/ZSUB", "Name": "sub.example.com.", "Config": {}},
                {"Id": "/hostedzone/Z123", "Name": "example.com.", "Config": {"Comment": "mine"}},
            ]
        }

        zone = discovery.get_hosted_zone("example.com")

        assert zone.id == "Z123"

    def test_no_zone(self, discovery, clients):
        clients["route53"].list_hosted_zones_by_name.return_value = {"HostedZones": []}
        assert discovery.get_hosted_zone("example.com") is None

    def test_lookup_error_means_not_found(self, discovery, clients):
        clients["route53"].list_hosted_zones_by_name.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "no"}}, "ListHostedZonesByName"
        )
        assert discovery.get_hosted_zone("example.com") is None

    def test_nameservers(self, discovery, clients):
        clients["route53"].get_hosted_zone.return_value = {
            "DelegationSet": {"NameServers": ["ns-1.awsdns-01.org", "ns-2.awsdns-02.com"]}
        }
        assert discovery.get_nameservers("Z123") == ["ns-1.awsdns-01.org", "ns-2.awsdns-02.com"]


class TestRecords:
    """Test record set helpers."""

    records = [
        {"Name": "example.com.", "Type": "A", "AliasTarget": {"DNSName": "old.cloudfront.net."}},
        {"Name": "_abc.example.com.", "Type": "CNAME",
         "ResourceRecords": [{"Value": "_xyz.acm-validations.aws."}]},
        {"Name": "www.example.com.", "Type": "CNAME", "ResourceRecords": [{"Value": "example.com"}]},
    ]

    def test_a_record_ignores_trailing_dot(self, discovery, clients):
        clients["route53"].get_paginator.return_value = paginator({"ResourceRecordSets": self.records})

        record = discovery.get_a_record("Z123", "example.com")

        assert record["AliasTarget"]["DNSName"] == "old.cloudfront.net."

    def test_cleanup_validation_records(self, discovery, clients):
        clients["route53"].get_paginator.return_value = paginator({"ResourceRecordSets": self.records})

        assert discovery.cleanup_validation_records("Z123") == 1

        changes = clients["route53"].change_resource_record_sets.call_args.kwargs["ChangeBatch"]["Changes"]
        assert changes == [{"Action": "DELETE", "ResourceRecordSet": self.records[1]}]

    def test_delete_nothing(self, discovery, clients):
        discovery.delete_records("Z123", [])
        clients["route53"].change_resource_record_sets.assert_not_called()


class TestCertificatesAndDistributions:
    """Test ACM and CloudFront lookups."""

    def test_certificate_exact_domain(self, discovery, clients):
        clients["acm"].get_paginator.return_value = paginator(
            {"CertificateSummaryList": [
                {"DomainName": "*.example.com", "CertificateArn": "arn:wild"},
                {"DomainName": "example.com", "CertificateArn": "arn:exact"},
            ]}
        )

        assert discovery.get_certificate_arn("example.com") == "arn:exact"
        clients["acm"].get_paginator.return_value.paginate.assert_called_with(CertificateStatuses=["ISSUED"])

    def test_distribution_not_ours(self, discovery, clients):
        clients["cloudfront"].get_paginator.return_value = paginator(
            {"DistributionList": {"Items": [
                {"Id": "E1", "Comment": "Created by Ness", "Aliases": {"Items": ["example.com"]}},
            ]}},
            {"DistributionList": {"Items": [
                {"Id": "E2", "Comment": "legacy", "Aliases": {"Items": ["example.com"]}},
            ]}},
        )

        assert discovery.get_distribution("example.com")["Id"] == "E2"

    def test_no_distribution(self, discovery, clients):
        clients["cloudfront"].get_paginator.return_value = paginator({"DistributionList": {"Quantity": 0}})
        assert discovery.get_distribution("example.com") is None


class TestTxtRecords:
    """Test TXT resolution and marker matching."""

    @patch("ness.aws.discovery.dns.resolver.resolve")
    def test_resolve_joins_strings(self, mock_resolve):
        mock_resolve.return_value = [Mock(strings=[b"ness-site-", b"verification"]), Mock(strings=[b"v=spf1"])]

        assert resolve_txt_records("example.com") == ["ness-site-verification", "v=spf1"]

    @patch("ness.aws.discovery.dns.resolver.resolve", side_effect=dns.resolver.NXDOMAIN())
    def test_missing_domain(self, mock_resolve):
        assert resolve_txt_records("example.com") == []

    def test_marker_is_case_insensitive(self):
        assert has_ownership_marker(["v=spf1", "NESS-site=abc"], "ness")
        assert not has_ownership_marker(["v=spf1"], "ness")
