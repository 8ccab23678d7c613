# tests/test_x402_policy.py
"""
Unit tests for the x402 access policy builder.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.x402.policy import (
    AccessPolicy,
    build_policies,
    is_gated_path,
    match_policy,
    normalize_path,
    FREE_PATHS,
    GATED_PRICE_USD,
    PAID_PATH,
    PAID_PRICE_USD,
)


class TestNormalizePath:
    """Test trailing slash normalization."""

    def test_strips_single_trailing_slash(self):
        assert normalize_path("/gated/my-post/") == "/gated/my-post"

    def test_leaves_path_without_slash(self):
        assert normalize_path("/gated/my-post") == "/gated/my-post"

    def test_strips_only_one_slash(self):
        """Only a single trailing slash is removed."""
        assert normalize_path("/gated/my-post//") == "/gated/my-post/"

    def test_root_is_untouched(self):
        assert normalize_path("/") == "/"


class TestIsGatedPath:
    """Test gated prefix detection."""

    def test_resource_under_prefix(self):
        assert is_gated_path("/gated/my-post") is True
        assert is_gated_path("/gated/my-post/") is True

    def test_bare_prefix_is_gated(self):
        assert is_gated_path("/gated/") is True

    def test_prefix_without_slash_is_not_gated(self):
        assert is_gated_path("/gated") is False

    def test_other_paths(self):
        assert is_gated_path("/paid") is False
        assert is_gated_path("/assets/gated/style.css") is False


class TestBuildPolicies:
    """Test policy table construction."""

    def test_static_entries_always_present(self):
        """Free status paths and the priced endpoint are always in the table."""
        table = build_policies("/anything")

        for free_path in FREE_PATHS:
            assert table[free_path].requires_payment is False
        assert table[PAID_PATH].price_amount == PAID_PRICE_USD
        assert table[PAID_PATH].requires_payment is True

    def test_paid_policy_schemas(self):
        """The priced endpoint advertises its input and output schemas."""
        paid = build_policies("/paid")[PAID_PATH]

        assert paid.description == "Static testing"
        assert paid.mime_type == ""
        assert paid.input_schema == {}
        assert paid.output_schema["type"] == "text/plain"
        assert paid.output_schema["properties"]["message"]["example"] == "****"

    def test_free_entries_come_first(self):
        """Insertion order keeps specific paths ahead of synthesized ones."""
        keys = list(build_policies("/gated/my-post/"))

        assert keys[:len(FREE_PATHS)] == list(FREE_PATHS)
        assert keys.index(PAID_PATH) < keys.index("/gated/my-post/")

    def test_non_gated_path_has_no_gated_entry(self):
        table = build_policies("/assets/style.css")

        assert set(table) == set(FREE_PATHS) | {PAID_PATH}

    def test_gated_path_synthesizes_entry(self):
        table = build_policies("/gated/my-post")
        policy = table["/gated/my-post"]

        assert policy.price_amount == GATED_PRICE_USD
        assert policy.description == "Gated post"
        assert policy.path_pattern == "/gated/my-post"

    def test_bare_prefix_is_priced_and_not_normalized(self):
        table = build_policies("/gated/")

        assert table["/gated/"].price_amount == GATED_PRICE_USD
        assert table["/gated/"].path_pattern == "/gated/"
        assert "/gated" not in table
        assert match_policy(table, "/gated/") is table["/gated/"]

    def test_raw_and_normalized_share_one_instance(self):
        """Both spellings of a gated path resolve to the same policy object."""
        table = build_policies("/gated/my-post/")

        assert table["/gated/my-post/"] is table["/gated/my-post"]

    @pytest.mark.parametrize("path", [
        "/gated/my-post",
        "/gated/my-post/",
        "/gated/2024/year-in-review/",
        "/gated/a",
    ])
    def test_policy_equals_policy_of_normalized_path(self, path):
        """Pricing is identical regardless of trailing slash style."""
        raw = match_policy(build_policies(path), path)
        normalized_path = normalize_path(path)
        normalized = match_policy(build_policies(normalized_path), normalized_path)

        assert raw == normalized

    def test_network_is_applied(self):
        table = build_policies("/gated/my-post", network="base-sepolia")

        assert table["/gated/my-post"].settlement_network == "base-sepolia"
        assert table[PAID_PATH].settlement_network == "base-sepolia"

    def test_tables_are_independent(self):
        """A later call never changes an earlier table."""
        first = build_policies("/gated/first")
        build_policies("/gated/second")

        assert "/gated/second" not in first
        assert "/gated/first" in first

    def test_table_is_read_only(self):
        table = build_policies("/gated/my-post")

        with pytest.raises(TypeError):
            table["/gated/other"] = table["/gated/my-post"]

    def test_policy_is_immutable(self):
        policy = build_policies("/gated/my-post")["/gated/my-post"]

        with pytest.raises(ValidationError):
            policy.price_amount = Decimal("0")

    def test_deterministic(self):
        assert dict(build_policies("/gated/x/")) == dict(build_policies("/gated/x/"))


class TestMatchPolicy:
    """Test policy lookup."""

    def test_exact_match(self):
        table = build_policies("/paid")
        assert match_policy(table, "/paid").price_amount == PAID_PRICE_USD

    def test_normalized_match(self):
        """A trailing slash still finds the exact entry."""
        table = build_policies("/paid/")
        assert match_policy(table, "/paid/") is table[PAID_PATH]

    def test_no_match(self):
        table = build_policies("/unknown/path")
        assert match_policy(table, "/unknown/path") is None

    def test_free_match_does_not_require_payment(self):
        table = build_policies("/health")
        assert match_policy(table, "/health").requires_payment is False


class TestAccessPolicy:
    """Test the AccessPolicy model."""

    def test_zero_price_is_free(self):
        policy = AccessPolicy(path_pattern="/x", price_amount=Decimal("0"))
        assert policy.requires_payment is False

    def test_positive_price_requires_payment(self):
        policy = AccessPolicy(path_pattern="/x", price_amount=Decimal("0.01"))
        assert policy.requires_payment is True
