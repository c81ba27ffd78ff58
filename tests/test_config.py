#!/usr/bin/env python
"""
Tests for YAML config loading and section access
"""
import sys
sys.path.insert(0, '.')

import pytest

from config import Config, get_config_section


CONFIG_TEXT = """
api:
  host: 127.0.0.1
  port: ${PRICEBOARD_TEST_PORT:-3000}
monitoring:
  alert_webhook: ${PRICEBOARD_TEST_WEBHOOK:-}
  token: ${PRICEBOARD_TEST_UNSET}
sources:
  goldtraders:
    urls:
      - ${PRICEBOARD_TEST_URL:-https://www.goldtraders.or.th/}
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(CONFIG_TEXT, encoding='utf-8')
    return path


def test_env_defaults(config_file, monkeypatch):
    for name in ('PRICEBOARD_TEST_PORT', 'PRICEBOARD_TEST_WEBHOOK', 'PRICEBOARD_TEST_UNSET', 'PRICEBOARD_TEST_URL'):
        monkeypatch.delenv(name, raising=False)
    cfg = Config(str(config_file))

    assert cfg.api.port == '3000'
    assert cfg.monitoring.get('alert_webhook') == ''
    # No default given: the placeholder is left as written
    assert cfg.monitoring.get('token') == '${PRICEBOARD_TEST_UNSET}'
    assert cfg.sources.goldtraders['urls'] == ['https://www.goldtraders.or.th/']


def test_env_overrides(config_file, monkeypatch):
    monkeypatch.setenv('PRICEBOARD_TEST_PORT', '8080')
    monkeypatch.setenv('PRICEBOARD_TEST_URL', 'http://mirror.test/')
    cfg = Config(str(config_file))

    assert int(cfg['api']['port']) == 8080
    assert get_config_section(cfg, 'sources')['goldtraders']['urls'] == ['http://mirror.test/']


def test_missing_file(tmp_path):
    with pytest.raises(RuntimeError):
        Config(str(tmp_path / 'absent.yaml'))


def test_missing_key_raises_attribute_error(config_file):
    cfg = Config(str(config_file))
    with pytest.raises(AttributeError):
        cfg.broadcast


def test_get_config_section_sources():
    assert get_config_section({'scheduler': {'interval_s': 5}}, 'scheduler') == {'interval_s': 5}
    assert get_config_section({'scheduler': None}, 'scheduler') == {}
    assert get_config_section(None, 'scheduler') == {}


def test_packaged_config_declares_every_source():
    cfg = Config()
    sources = get_config_section(cfg, 'sources')
    assert sources['goldtraders']['extractor'] == 'goldtraders_board'
    assert sources['investing_spot']['extractor'] == 'spot_quote'
    assert int(cfg.transactions['max_entries']) == 1000
