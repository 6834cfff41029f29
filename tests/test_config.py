"""
Tests for environment overrides in config.
"""
import importlib

import config


class TestEnvironmentOverrides:

    def test_defaults(self):
        assert config.ORDER_NUMBER_START == 1000
        assert config.ORDER_NUMBER_PREFIX == "MOMO"

    def test_order_number_start_from_env(self, monkeypatch):
        monkeypatch.setenv("ORDER_NUMBER_START", "5000")
        monkeypatch.setenv("DELIVERY_FEE", "4.50")
        try:
            reloaded = importlib.reload(config)
            assert reloaded.ORDER_NUMBER_START == 5000
            assert reloaded.DELIVERY_FEE == 4.50
        finally:
            monkeypatch.delenv("ORDER_NUMBER_START")
            monkeypatch.delenv("DELIVERY_FEE")
            importlib.reload(config)

    def test_blank_value_keeps_default(self, monkeypatch):
        monkeypatch.setenv("ORDER_NUMBER_START", "")
        try:
            assert importlib.reload(config).ORDER_NUMBER_START == 1000
        finally:
            monkeypatch.delenv("ORDER_NUMBER_START")
            importlib.reload(config)
