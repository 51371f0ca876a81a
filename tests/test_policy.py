"""
Tests for retry policy configuration and override merging.
"""

import pytest

from retrykit.core.retry import (
    DEFAULT_ENDPOINT_POLICIES,
    DEFAULT_METHOD_POLICIES,
    DEFAULT_RETRY_POLICY,
    NO_RETRY_POLICY,
    PolicyOverride,
    RetryPolicy,
)
from retrykit.core.retry.policy import coerce_override


class TestRetryPolicy:
    """Tests for RetryPolicy configuration."""

    def test_default_values(self):
        policy = RetryPolicy()
        assert policy.max_retries == 3
        assert policy.base_delay_ms == 1000
        assert policy.max_delay_ms == 30000
        assert policy.backoff_multiplier == 2.0
        assert policy.jitter_factor == 0.1
        assert policy.retryable_statuses == {408, 429, 500, 502, 503, 504}
        assert policy.retryable_errors == {"NetworkError", "TimeoutError", "ConnectionError"}

    def test_collections_normalized_to_frozensets(self):
        policy = RetryPolicy(retryable_statuses=[500, 503], retryable_errors=["NetworkError"])
        assert isinstance(policy.retryable_statuses, frozenset)
        assert isinstance(policy.retryable_errors, frozenset)
        assert 503 in policy.retryable_statuses

    def test_validation_max_retries(self):
        with pytest.raises(ValueError, match="max_retries must be >= 0"):
            RetryPolicy(max_retries=-1)

    def test_validation_base_delay(self):
        with pytest.raises(ValueError, match="base_delay_ms must be >= 0"):
            RetryPolicy(base_delay_ms=-5)

    def test_validation_multiplier(self):
        with pytest.raises(ValueError, match="backoff_multiplier must be > 0"):
            RetryPolicy(backoff_multiplier=0)

    def test_validation_jitter_factor(self):
        with pytest.raises(ValueError, match="jitter_factor must be between 0 and 1"):
            RetryPolicy(jitter_factor=1.5)

    def test_base_delay_above_max_delay_allowed(self):
        policy = RetryPolicy(base_delay_ms=5000, max_delay_ms=1000)
        assert policy.base_delay_ms > policy.max_delay_ms

    def test_policy_is_immutable(self):
        policy = RetryPolicy()
        with pytest.raises(AttributeError):
            policy.max_retries = 10  # type: ignore[misc]

    def test_merged_applies_only_set_fields(self):
        merged = DEFAULT_RETRY_POLICY.merged(PolicyOverride(max_retries=7, base_delay_ms=250))
        assert merged.max_retries == 7
        assert merged.base_delay_ms == 250
        assert merged.max_delay_ms == DEFAULT_RETRY_POLICY.max_delay_ms
        assert merged.retryable_statuses == DEFAULT_RETRY_POLICY.retryable_statuses

    def test_merged_does_not_mutate(self):
        DEFAULT_RETRY_POLICY.merged(PolicyOverride(max_retries=9))
        assert DEFAULT_RETRY_POLICY.max_retries == 3

    def test_merged_none_returns_self(self):
        assert DEFAULT_RETRY_POLICY.merged(None) is DEFAULT_RETRY_POLICY

    def test_to_dict_sorted(self):
        data = RetryPolicy(retryable_statuses={504, 500}).to_dict()
        assert data["retryable_statuses"] == [500, 504]
        assert data["max_retries"] == 3

    def test_from_dict_fills_missing_with_defaults(self):
        policy = RetryPolicy.from_dict({"max_retries": 1})
        assert policy.max_retries == 1
        assert policy.base_delay_ms == 1000


class TestPolicyOverride:
    """Tests for partial policy overrides."""

    def test_empty_override(self):
        assert PolicyOverride().to_dict() == {}

    def test_from_dict_snake_case(self):
        override = PolicyOverride.from_dict({"max_retries": 2, "retryable_statuses": [500, 502]})
        assert override.max_retries == 2
        assert override.retryable_statuses == frozenset({500, 502})
        assert override.base_delay_ms is None

    def test_from_dict_camel_case(self):
        override = PolicyOverride.from_dict({"maxRetries": 5, "baseDelay": 500, "backoffMultiplier": 1.5})
        assert override.max_retries == 5
        assert override.base_delay_ms == 500
        assert override.backoff_multiplier == 1.5

    def test_from_dict_aliases(self):
        override = PolicyOverride.from_dict({"base_delay": 100, "max_delay": 900})
        assert override.base_delay_ms == 100
        assert override.max_delay_ms == 900

    def test_from_dict_coerces_strings(self):
        override = PolicyOverride.from_dict({"max_retries": "4", "jitter_factor": "0.2"})
        assert override.max_retries == 4
        assert override.jitter_factor == 0.2

    def test_from_dict_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown retry policy option"):
            PolicyOverride.from_dict({"retries": 3})

    def test_from_dict_invalid_value(self):
        with pytest.raises(ValueError, match="Invalid value for 'max_retries'"):
            PolicyOverride.from_dict({"max_retries": "many"})

    @pytest.mark.parametrize("value", [2.7, "2.5", True])
    def test_from_dict_rejects_non_integral_retries(self, value):
        with pytest.raises(ValueError, match="Invalid value for 'max_retries'"):
            PolicyOverride.from_dict({"max_retries": value})

    def test_from_dict_accepts_integral_float_retries(self):
        assert PolicyOverride.from_dict({"max_retries": 3.0}).max_retries == 3

    def test_from_dict_statuses_must_be_list(self):
        with pytest.raises(ValueError, match="retryable_statuses"):
            PolicyOverride.from_dict({"retryable_statuses": "500"})

    def test_from_policy_sets_every_field(self):
        override = PolicyOverride.from_policy(DEFAULT_RETRY_POLICY)
        assert set(override.to_dict()) == set(DEFAULT_RETRY_POLICY.to_dict())

    def test_coerce_override_accepts_all_forms(self):
        assert coerce_override(PolicyOverride(max_retries=1)).max_retries == 1
        assert coerce_override(RetryPolicy(max_retries=2)).max_retries == 2
        assert coerce_override({"max_retries": 3}).max_retries == 3


class TestReferencePolicies:
    """Tests for the shipped reference policies."""

    def test_login_not_retried_on_rate_limit(self):
        login = DEFAULT_ENDPOINT_POLICIES["/auth/login"]
        assert login.max_retries == 1
        assert 429 not in login.retryable_statuses

    def test_search_retried_aggressively(self):
        search = DEFAULT_ENDPOINT_POLICIES["/products/search"]
        assert search.max_retries == 5
        assert search.backoff_multiplier == 1.5

    def test_upload_longer_max_delay(self):
        assert DEFAULT_ENDPOINT_POLICIES["/upload"].max_delay_ms == 60000

    def test_method_policies(self):
        assert DEFAULT_METHOD_POLICIES["GET"].max_retries == 5
        assert DEFAULT_METHOD_POLICIES["PATCH"].max_retries == 1
        assert 408 not in DEFAULT_METHOD_POLICIES["POST"].retryable_statuses

    def test_no_retry_policy(self):
        assert NO_RETRY_POLICY.max_retries == 0
