# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for memory cache keys and TTL classes."""

import pytest

from src.core.config.settings import MemorySettings
from src.core.memory.keys import (
    TTLClass,
    context_key,
    context_prefix,
    conversation_key,
    freshness_key,
    insights_key,
    ttl_seconds,
    user_data_key,
    user_prefixes,
)
from src.core.memory.models import StepKey


@pytest.fixture
def step_key() -> StepKey:
    """Create a step key for testing."""
    return StepKey(
        user_id="u-1",
        task_id="stakeholder_identification_analysis",
        subtask_id="stakeholder_identification",
        step_id="comprehensive_stakeholder_list",
    )


@pytest.mark.unit
class TestKeyBuilders:
    """Test cases for cache key builders."""

    def test_conversation_key_uses_context_id(self, step_key: StepKey) -> None:
        """Test that step buffer keys join task, subtask and step."""
        assert conversation_key(step_key) == (
            "conv:u-1:stakeholder_identification_analysis_"
            "stakeholder_identification_comprehensive_stakeholder_list"
        )

    def test_derived_keys(self) -> None:
        """Test the layout of derived cache keys."""
        assert context_key("u-1", "product_owner", "home") == "ctx:u-1:product_owner:home"
        assert user_data_key("u-1") == "user:u-1:data"
        assert insights_key("u-1", "qa_lead") == "insights:u-1:qa_lead"
        assert freshness_key("u-1") == "memory:u-1:freshness"

    def test_every_key_is_covered_by_a_user_prefix(self, step_key: StepKey) -> None:
        """Test that forgetting a user by prefix reaches all of their keys."""
        keys = [
            conversation_key(step_key),
            context_key("u-1", "product_owner", "home"),
            user_data_key("u-1"),
            insights_key("u-1", "qa_lead"),
            freshness_key("u-1"),
        ]
        prefixes = user_prefixes("u-1")

        for key in keys:
            assert any(key.startswith(p) for p in prefixes), key

    def test_prefixes_do_not_leak_across_users(self) -> None:
        """Test that one user's prefix never matches another user's keys."""
        assert not context_key("u-10", "product_owner", "home").startswith(context_prefix("u-1"))
        for prefix in user_prefixes("u-1"):
            assert not freshness_key("u-10").startswith(prefix)


@pytest.mark.unit
class TestTTLClasses:
    """Test cases for TTL class resolution."""

    def test_default_ttls(self) -> None:
        """Test the lifetime of each class with default settings."""
        settings = MemorySettings()

        assert ttl_seconds(TTLClass.CONVERSATION, settings) == 86400
        assert ttl_seconds(TTLClass.CONTEXT, settings) == 300
        assert ttl_seconds(TTLClass.USER_DATA, settings) == 14400
        assert ttl_seconds(TTLClass.INSIGHTS, settings) == 3600

    def test_bookkeeping_never_expires(self) -> None:
        """Test that bookkeeping entries have no TTL."""
        assert ttl_seconds(TTLClass.BOOKKEEPING, MemorySettings()) is None

    def test_ttls_follow_settings(self) -> None:
        """Test that configured TTLs are used."""
        settings = MemorySettings(context_ttl_seconds=60)

        assert ttl_seconds(TTLClass.CONTEXT, settings) == 60
