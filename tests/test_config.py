# tests/test_config.py
import json

import pytest

from modules.job_monitor.lib.config import DEFAULT_CATEGORY_KEYWORDS, Settings, load_sites_file
from modules.job_monitor.lib.errors import ConfigError


def test_sites_file_yaml_with_camel_case_aliases(sites_file, db_path):
    s = Settings.from_env_and_kwargs({"sites_path": str(sites_file), "sqlite_path": db_path, "send_email": False})

    assert [site.name for site in s.sites] == ["Acme", "Globex", "Initech"]
    acme, globex, initech = s.sites
    assert acme.url_prefix == "https://acme.test"
    assert list(acme.category_keywords) == ["Eng", "Ops"]
    assert globex.selectors.job_list == ".posting"
    assert globex.category_keywords == {}
    assert initech.method == "static"
    assert s.methods_for(initech) == ["static"]
    assert s.methods_for(acme) == ["http"]
    assert s.default_category_keywords == DEFAULT_CATEGORY_KEYWORDS


def test_sites_path_from_env(sites_file, db_path, monkeypatch):
    monkeypatch.setenv("JOB_MONITOR_SITES_PATH", str(sites_file))
    s = Settings.from_env_and_kwargs({"sqlite_path": db_path, "send_email": False})
    assert len(s.sites) == 3


def test_json_sites_file_bare_list_and_defaults_object(tmp_path):
    path = tmp_path / "sites.json"
    path.write_text(
        json.dumps({
            "sites": [{"name": "A", "url": "https://a.test", "method": "static"}],
            "default_category_keywords": {"Eng": ["Engineer", " "]},
        })
    )
    sites, defaults = load_sites_file(str(path))
    assert sites[0].name == "A"
    assert defaults == {"Eng": ("engineer",)}

    path.write_text(json.dumps([{"name": "B", "url": "https://b.test"}]))
    sites, defaults = load_sites_file(str(path))
    assert [s.name for s in sites] == ["B"]
    assert defaults is None


def test_enabled_sites_env_and_unknown_names(sites_file, db_path, monkeypatch):
    monkeypatch.setenv("ENABLED_SITES", "Initech, Ghost ,Acme")
    s = Settings.from_env_and_kwargs({"sites_path": str(sites_file), "sqlite_path": db_path, "send_email": False})

    selected, unknown = s.resolve_enabled()
    assert [site.name for site in selected] == ["Initech", "Acme"]
    assert unknown == ["Ghost"]


def test_flags_from_env(sites_file, db_path, monkeypatch):
    monkeypatch.setenv("FETCH_JOB_DETAILS", "true")
    monkeypatch.setenv("JOB_MONITOR_FETCH_METHOD", "STATIC")
    s = Settings.from_env_and_kwargs({"sites_path": str(sites_file), "sqlite_path": db_path, "send_email": False})
    assert s.fetch_job_details is True
    assert s.fetch_method == "static"


def test_dry_run_env_forces_sending_off(sites_file, db_path):
    s = Settings.from_env_and_kwargs({
        "sites_path": str(sites_file),
        "sqlite_path": db_path,
        "send_email": True,
        "email_to": "a@x.test, b@x.test",
    })
    assert s.send_email is False
    assert s.email_to == ["a@x.test", "b@x.test"]
    assert s.delivers is False


def test_sending_requires_recipients(sites_file, db_path, monkeypatch):
    monkeypatch.delenv("JOB_MONITOR_DRY_RUN")
    with pytest.raises(ConfigError, match="recipients"):
        Settings.from_env_and_kwargs({"sites_path": str(sites_file), "sqlite_path": db_path, "send_email": True})

    monkeypatch.setenv("NOTIFICATION_EMAIL", "me@x.test")
    s = Settings.from_env_and_kwargs({"sites_path": str(sites_file), "sqlite_path": db_path, "send_email": True})
    assert s.delivers and s.email_to == ["me@x.test"]


@pytest.mark.parametrize(
    "sites, message",
    [
        ([{"name": "A"}], "requires 'name' and 'url'"),
        ([{"name": "A", "url": "u", "method": "static"}, {"name": "A", "url": "v", "method": "static"}], "Duplicate"),
        ([{"name": "A", "url": "u"}], "needs 'selectors'"),
        ([{"name": "A", "url": "u", "method": "carrier-pigeon"}], "Unknown fetch method"),
        ([{"name": "A", "url": "u", "method": "static", "category_keywords": {"Eng": "engineer"}}], "list of keywords"),
        ([{"name": "A", "url": "u", "selectors": {"job_list": "li"}}], "requires 'job_list'"),
        ([], "No sites"),
    ],
)
def test_invalid_sites_raise_config_error(sites, message, db_path):
    with pytest.raises(ConfigError, match=message):
        Settings.from_env_and_kwargs({"sites": sites, "sqlite_path": db_path, "send_email": False})


def test_missing_sites_source_is_config_error():
    with pytest.raises(ConfigError, match="No sites configured"):
        Settings.from_env_and_kwargs({})


def test_missing_sites_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        Settings.from_env_and_kwargs({"sites_path": str(tmp_path / "nope.yaml")})


def test_negative_delay_rejected(db_path):
    with pytest.raises(ConfigError):
        Settings.from_env_and_kwargs({
            "sites": [{"name": "A", "url": "u", "method": "static"}],
            "sqlite_path": db_path,
            "site_delay_seconds": -1,
            "send_email": False,
        })


def test_fallback_methods_deduped_after_preferred(db_path):
    s = Settings.from_env_and_kwargs({
        "sites": [{"name": "A", "url": "u", "selectors": {"job_list": "li", "job_title": "a", "job_url": "a"}}],
        "sqlite_path": db_path,
        "fallback_methods": "browser, http, browser",
        "send_email": False,
    })
    assert s.methods_for(s.sites[0]) == ["http", "browser"]
