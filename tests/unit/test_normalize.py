"""Unit tests for sender and domain normalisation."""

import pytest

from mailroute.core.normalize import (
    normalize_domain,
    normalize_email_address,
    normalize_org_email,
    sender_domain,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Alice@Example.COM", "alice@example.com"),
        ("Alice Example <Alice@Example.com>", "alice@example.com"),
        ('"Doe, John" <john.doe@vendor.example>', "john.doe@vendor.example"),
        ("  bob@example.com  ", "bob@example.com"),
        ("=?UTF-8?B?5bGx55Sw?= <yamada@example.jp>", "yamada@example.jp"),
    ],
)
def test_normalize_email_address_extracts_address(raw, expected):
    assert normalize_email_address(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "not-an-email", "@example.com", "user@", "a b@example.com"])
def test_normalize_email_address_rejects_malformed(raw):
    assert normalize_email_address(raw) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Example.COM", "example.com"),
        ("@vendor.example", "vendor.example"),
        (".vendor.example", "vendor.example"),
    ],
)
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "localhost", "has space.com", "user@example.com"])
def test_normalize_domain_rejects_malformed(raw):
    assert normalize_domain(raw) is None


def test_normalize_org_email_requires_org_suffix():
    assert normalize_org_email("Taro <Taro@Example.jp>", "example.jp") == "taro@example.jp"
    assert normalize_org_email("taro@example.com", "example.jp") is None
    assert normalize_org_email("taro@sub.example.jp", "example.jp") is None


def test_sender_domain():
    assert sender_domain("Alerts <alerts@Monitor.example>") == "monitor.example"
    assert sender_domain(None) is None
    assert sender_domain("garbage") is None
