"""
Unit tests for the Agent Identity Registry.
"""

from datetime import datetime, timedelta, timezone

import pytest

from sentra_hub import store as store_module
from sentra_hub.errors import AlreadyOwned, MalformedInput, UnknownAgent
from sentra_hub.registry import AgentRegistry
from sentra_hub.store import MemoryStore


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def registry(store):
    return AgentRegistry(store)


class TestLookup:
    def test_lookup_known_token(self, registry, store):
        created = store.create_agent('tok-1')

        assert registry.lookup('tok-1').id == created.id

    @pytest.mark.parametrize('token', [None, '', 'never-provisioned'])
    def test_lookup_unknown(self, registry, token):
        with pytest.raises(UnknownAgent):
            registry.lookup(token)


class TestTouch:
    def test_touch_sets_identity_and_last_seen(self, registry, store):
        store.create_agent('tok-1')

        agent = registry.touch('tok-1', 'web-1', 'Ubuntu 24.04')

        assert agent.hostname == 'web-1'
        assert agent.os == 'Ubuntu 24.04'
        assert agent.last_seen is not None

    def test_touch_never_blanks_fields(self, registry, store):
        store.create_agent('tok-1')
        first = registry.touch('tok-1', 'web-1', 'Ubuntu 24.04')

        second = registry.touch('tok-1', None, '   ')

        assert second.hostname == 'web-1'
        assert second.os == 'Ubuntu 24.04'
        assert second.last_seen >= first.last_seen

    def test_touch_unknown(self, registry):
        with pytest.raises(UnknownAgent):
            registry.touch('missing', 'web-1')


class TestClaim:
    def test_claim_unowned(self, registry, store):
        store.create_agent('tok-1')

        agent = registry.claim('tok-1', owner_id=5)

        assert agent.user_id == 5
        assert [a.app_id for a in registry.agents_for_owner(5)] == ['tok-1']

    def test_reclaim_by_same_owner_is_idempotent(self, registry, store):
        store.create_agent('tok-1', user_id=5)

        assert registry.claim('tok-1', owner_id=5).user_id == 5

    def test_claim_owned_by_other_is_refused(self, registry, store):
        store.create_agent('tok-1', user_id=5)

        with pytest.raises(AlreadyOwned):
            registry.claim('tok-1', owner_id=6)
        assert store.get_agent_by_token('tok-1').user_id == 5

    def test_claim_unknown_token(self, registry):
        with pytest.raises(UnknownAgent):
            registry.claim('never-provisioned', owner_id=5)

    def test_claim_requires_token(self, registry):
        with pytest.raises(MalformedInput):
            registry.claim('  ', owner_id=5)


class TestProvision:
    def test_provision_generates_token(self, registry):
        agent = registry.provision()

        assert len(agent.app_id) >= 24
        assert agent.user_id is None

    def test_provision_given_token_with_owner(self, registry):
        agent = registry.provision('tok-9', owner_id=3)

        assert agent.app_id == 'tok-9'
        assert agent.user_id == 3

    def test_provision_duplicate(self, registry):
        registry.provision('tok-9')

        with pytest.raises(MalformedInput):
            registry.provision('tok-9')


class TestAgentsForOwner:
    def test_most_recently_seen_first(self, registry, store, monkeypatch):
        start = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
        ticks = iter(start + timedelta(minutes=n) for n in range(10))
        monkeypatch.setattr(store_module, 'utcnow', lambda: next(ticks))
        store.create_agent('never-seen', user_id=1)
        store.create_agent('old', user_id=1)
        store.create_agent('new', user_id=1)
        store.create_agent('someone-else', user_id=2)
        registry.touch('old')
        registry.touch('new')

        assert [a.app_id for a in registry.agents_for_owner(1)] == ['new', 'old', 'never-seen']
