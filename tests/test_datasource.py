import random

import pytest

from sqlmapper import (
    ConfigurationError,
    DataSource,
    DataSourceFilter,
    DataSourceRole,
    Intent,
    RequestContext,
)
from sqlmapper.config.models import DatabaseConfig, ReadPolicyName
from sqlmapper.core.datasource import RoundRobinPolicy, WeightedRandomPolicy, policy_from_name


def _write(name="primary"):
    return DataSource(name=name, url="sqlite:///w.db", role=DataSourceRole.WRITE)


def _read(name, weight=1):
    return DataSource(name=name, url=f"sqlite:///{name}.db", role=DataSourceRole.READ, weight=weight)


class TestElection:
    """Test read/write endpoint election."""

    def test_write_intent_elects_write_source(self):
        f = DataSourceFilter(_write(), [_read("r1")])
        assert f.elect(RequestContext(intent=Intent.WRITE)).name == "primary"

    def test_read_intent_elects_read_source(self):
        f = DataSourceFilter(_write(), [_read("r1")])
        source = f.elect(RequestContext(intent=Intent.READ))
        assert source.role is DataSourceRole.READ

    def test_named_read_source(self):
        f = DataSourceFilter(_write(), [_read("r1"), _read("r2")])
        request = RequestContext(intent=Intent.READ, read_db="r2")
        assert f.elect(request).name == "r2"

    def test_unknown_named_read_source(self):
        f = DataSourceFilter(_write(), [_read("r1")])
        with pytest.raises(ConfigurationError):
            f.elect(RequestContext(intent=Intent.READ, read_db="nope"))

    def test_missing_write_source(self):
        f = DataSourceFilter(None, [_read("r1")])
        with pytest.raises(ConfigurationError):
            f.elect(RequestContext(intent=Intent.WRITE))

    def test_missing_read_source_does_not_fall_back(self):
        f = DataSourceFilter(_write(), [])
        with pytest.raises(ConfigurationError):
            f.elect(RequestContext(intent=Intent.READ))

    def test_unspecified_intent_is_rejected(self):
        f = DataSourceFilter(_write(), [_read("r1")])
        with pytest.raises(ConfigurationError):
            f.elect(RequestContext())

    def test_role_mismatch_rejected(self):
        with pytest.raises(ConfigurationError):
            DataSourceFilter(_read("r1"), [])
        with pytest.raises(ConfigurationError):
            DataSourceFilter(_write(), [_write("other")])

    def test_from_config(self):
        database = DatabaseConfig.model_validate(
            {
                "write": {"name": "primary", "url": "sqlite:///w.db"},
                "reads": [{"name": "r1", "url": "sqlite:///r1.db", "weight": 3}],
            }
        )
        f = DataSourceFilter.from_config(database)

        assert f.write_source.role is DataSourceRole.WRITE
        assert f.read_sources[0].weight == 3


class TestReadPolicies:
    """Test read policies."""

    def test_round_robin_cycles(self):
        policy = RoundRobinPolicy()
        sources = [_read("r1"), _read("r2"), _read("r3")]
        names = [policy.choose(sources).name for _ in range(6)]
        assert names == ["r1", "r2", "r3", "r1", "r2", "r3"]

    def test_weighted_random_respects_zero_weight(self):
        policy = WeightedRandomPolicy(random.Random(42))
        sources = [_read("r1", weight=0), _read("r2", weight=5)]
        assert {policy.choose(sources).name for _ in range(50)} == {"r2"}

    def test_weighted_random_all_zero_picks_first(self):
        policy = WeightedRandomPolicy(random.Random(1))
        sources = [_read("r1", weight=0), _read("r2", weight=0)]
        assert policy.choose(sources).name == "r1"

    def test_policy_from_name(self):
        assert isinstance(policy_from_name(ReadPolicyName.ROUND_ROBIN), RoundRobinPolicy)
        assert isinstance(policy_from_name(ReadPolicyName.WEIGHTED), WeightedRandomPolicy)
