"""Unit tests for the broad-domain classifier."""

import pytest

from fakes import label_rule

from mailroute.core.safety import broad_domain_warning, broad_match_domain, is_broad_domain


@pytest.mark.parametrize(
    "domain",
    [
        "gmail.com",
        "googlemail.com",
        "yahoo.co.jp",
        "outlook.com",
        "hotmail.com",
        "icloud.com",
        "@Gmail.com",
        "example.com",
        "vendor.net",
        "company.co.jp",
        "provider.ne.jp",
    ],
)
def test_broad_domains(domain):
    assert is_broad_domain(domain) is True


@pytest.mark.parametrize(
    "domain",
    [
        "alerts.specific-vendor.example.com",
        "billing.vendor.example",
        "mail.company.co.jp",
        "",
        "not a domain",
    ],
)
def test_specific_domains(domain):
    assert is_broad_domain(domain) is False


def test_broad_domain_warning_shape():
    warning = broad_domain_warning("@Gmail.com")
    assert warning["type"] == "broad_domain"
    assert "gmail.com" in warning["message"]


def test_broad_match_domain_checks_the_domain_fallback():
    mixed = label_rule("r1", ["A"], from_email="ops@vendor.example", from_domain="Gmail.com")
    assert broad_match_domain(mixed.match) == "gmail.com"
    assert broad_match_domain(label_rule("r2", ["A"], from_email="friend@gmail.com").match) is None
    assert broad_match_domain(label_rule("r3", ["A"], from_domain="mail.vendor.example").match) is None
