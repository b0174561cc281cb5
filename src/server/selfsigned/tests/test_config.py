"""
测试 config.py 的多来源配置加载。
"""

import json

from src.server.config import Config


def test_defaults(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CONFIG_FILE", raising=False)
    cfg = Config()
    assert cfg.default_country == "JP"
    assert cfg.default_validity_days == 365
    assert cfg.default_key_size == 2048
    assert cfg.default_algorithm == "RSA"
    assert cfg.private_key_format == "pkcs8"
    assert cfg.cors_origins == ["*"]


def test_config_json_file(monkeypatch, tmp_path):
    """测试从 CONFIG_FILE 指定的 JSON 文件加载"""
    path = tmp_path / "custom.json"
    path.write_text(json.dumps({"default_country": "us", "default_key_size": 4096}), encoding="utf-8")
    monkeypatch.setenv("CONFIG_FILE", str(path))
    cfg = Config()
    assert cfg.default_country == "US"
    assert cfg.default_key_size == 4096


def test_env_overrides_json(monkeypatch, tmp_path):
    """测试环境变量优先于 config.json"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CONFIG_FILE", raising=False)
    (tmp_path / "config.json").write_text(json.dumps({"default_validity_days": 30}), encoding="utf-8")
    monkeypatch.setenv("DEFAULT_VALIDITY_DAYS", "90")
    assert Config().default_validity_days == 90


def test_cors_origins_separators(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test;http://c.test")
    assert Config().cors_origins == ["http://a.test", "http://b.test", "http://c.test"]

    monkeypatch.setenv("CORS_ORIGINS", '["http://d.test"]')
    assert Config().cors_origins == ["http://d.test"]


def test_broken_config_json_ignored(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CONFIG_FILE", raising=False)
    (tmp_path / "config.json").write_text("{not json", encoding="utf-8")
    assert Config().default_country == "JP"
