"""Tests for stockledger_config: defaults, overrides, validation and the config trace."""

import pytest
import yaml

from stockledger_config import CostingPolicy, get_active_config
from stockledger_config.loader import deep_merge, parse_config


def _write(tmp_path, data, name="override.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:
    def test_packaged_defaults_match_dataclass_defaults(self):
        config = get_active_config()

        assert config.config_id == "stockledger-default"
        assert config.costing == CostingPolicy()
        assert config.database.pool_size == 20
        assert config.logging.level == "INFO"
        assert len(config.checksum) == 64

    def test_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config().checksum


class TestOverrides:
    def test_nested_override_keeps_siblings(self, tmp_path):
        path = _write(tmp_path, {"database": {"url": "sqlite:///other.db"}})

        config = get_active_config(path)

        assert config.database.url == "sqlite:///other.db"
        assert config.database.pool_size == 20
        assert config.checksum != get_active_config().checksum

    def test_costing_policy_override(self, tmp_path):
        path = _write(tmp_path, {"costing": {"order_number_prefix": "SO-", "order_number_width": 5}})

        policy = get_active_config(path).costing

        assert policy.format_order_number(42) == "SO-00042"
        assert policy.parse_order_number("SO-00042") == 42

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestValidation:
    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            parse_config({"metrics": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown keys"):
            parse_config({"costing": {"rounding": "banker"}})

    def test_wrong_type(self):
        with pytest.raises(ValueError, match="pool_size"):
            parse_config({"database": {"pool_size": "lots"}})

    def test_bad_log_level(self):
        with pytest.raises(ValueError):
            parse_config({"logging": {"level": "CHATTY"}})

    def test_order_number_width_positive(self):
        with pytest.raises(ValueError):
            CostingPolicy(order_number_width=0)


def test_deep_merge_does_not_mutate_inputs():
    base = {"a": {"b": 1, "c": 2}}
    override = {"a": {"b": 3}}

    merged = deep_merge(base, override)

    assert merged == {"a": {"b": 3, "c": 2}}
    assert base == {"a": {"b": 1, "c": 2}}


def test_config_trace_logged(captured_logs):
    config = get_active_config()

    trace = next(r for r in captured_logs() if r["message"] == "STOCKLEDGER_CONFIG_TRACE")
    assert trace["checksum"] == config.checksum
    assert trace["config_id"] == "stockledger-default"
    assert trace["sources"][0].endswith("defaults.yaml")


class TestCostingPolicyReferences:
    def test_reference_formats(self):
        policy = CostingPolicy()
        assert policy.adjustment_reference("abc") == "ADJ-abc"
        assert policy.initial_reference("abc") == "INIT-abc"
        assert policy.manual_entry_reference("abc") == "LEDGER-abc"
        assert policy.format_order_number(7) == "ORD-007"
        assert policy.format_order_number(1234) == "ORD-1234"

    def test_foreign_order_numbers_ignored(self):
        policy = CostingPolicy()
        assert policy.parse_order_number("INV-001") is None
        assert policy.parse_order_number("ORD-X1") is None
