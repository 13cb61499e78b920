import pytest

from service import cli


def _run_args(sites_file, db_path, *extra):
    return [
        "run",
        "--sites",
        "Initech",
        "--no-email",
        "--retries",
        "1",
        "--kwargs",
        f"sites_path={sites_file}",
        f"sqlite_path={db_path}",
        "site_delay_seconds=0",
        *extra,
    ]


def test_cli_run_prints_summary(sites_file, db_path, capsys):
    rc = cli.main(_run_args(sites_file, db_path))

    out = capsys.readouterr().out
    assert rc == cli.EXIT_OK
    assert "DONE: digest_built (new=1, seen=1)" in out
    assert "Initech: 1 new" in out
    assert "subject: 1 New Job(s) at Initech" in out


def test_cli_run_twice_reports_no_new_jobs(sites_file, db_path, capsys):
    assert cli.main(_run_args(sites_file, db_path)) == cli.EXIT_OK
    capsys.readouterr()
    assert cli.main(_run_args(sites_file, db_path)) == cli.EXIT_OK
    assert "DONE: no_new_jobs (new=0, seen=1)" in capsys.readouterr().out


def test_cli_run_unknown_site_is_reported(sites_file, db_path, capsys):
    args = _run_args(sites_file, db_path)
    args[2] = "Initech,Hooli"
    assert cli.main(args) == cli.EXIT_OK
    assert "unknown sites (skipped): Hooli" in capsys.readouterr().out


def test_cli_run_bad_settings_is_setup_error(tmp_path, capsys):
    rc = cli.main(["run", "--retries", "1", "--kwargs", f"sites_path={tmp_path / 'missing.yaml'}"])
    assert rc == cli.EXIT_SETUP
    assert "SETUP ERROR" in capsys.readouterr().err


def test_cli_run_bad_module_is_setup_error(capsys):
    assert cli.main(["run", "--module", "modules.does_not_exist"]) == cli.EXIT_SETUP


def test_cli_run_malformed_kwargs(capsys):
    assert cli.main(["run", "--kwargs", "novalue"]) == cli.EXIT_SETUP
    assert "key=value" in capsys.readouterr().err


def test_cli_run_failed_site_still_exits_ok(db_path, capsys, tmp_path):
    broken = tmp_path / "broken.yaml"
    broken.write_text(
        "sites:\n  - {name: Down, url: 'https://down.test', method: static, params: {error: offline}}\n",
        encoding="utf-8",
    )
    # a failed site is contained, so the run itself still succeeds
    rc = cli.main(["run", "--retries", "1", "--kwargs", f"sites_path={broken}", f"sqlite_path={db_path}"])
    assert rc == cli.EXIT_OK
    assert "failed sites: Down" in capsys.readouterr().out


def test_validate_config_ok_and_error(tmp_path, capsys):
    good = tmp_path / "good.yaml"
    good.write_text("jobs:\n  - module: modules.job_monitor.main\n    daily_time: '08:00'\n", encoding="utf-8")
    bad = tmp_path / "bad.yaml"
    bad.write_text("jobs:\n  - module: modules.job_monitor.main\n", encoding="utf-8")

    assert cli.main(["--config", str(good), "validate-config"]) == cli.EXIT_OK
    assert "OK" in capsys.readouterr().out
    assert cli.main(["--config", str(bad), "validate-config"]) == cli.EXIT_SETUP
    assert "exactly one trigger" in capsys.readouterr().err


def test_list_jobs_table(tmp_path, capsys):
    cfg = tmp_path / "cfg.yaml"
    cfg.write_text(
        "jobs:\n  - id: jm\n    module: modules.job_monitor.main\n    interval: {minutes: 30}\n    summary: hourly\n",
        encoding="utf-8",
    )
    assert cli.main(["--config", str(cfg), "list-jobs"]) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "JOB" in out and "TRIGGER" in out
    assert "jm" in out and "interval={'minutes': 30}" in out and "hourly" in out


def test_list_sites_shows_baseline_sizes(sites_file, db_path, capsys):
    from modules.job_monitor.lib import db

    db.save_baseline(db_path, "Acme", {"A", "B"})
    rc = cli.main(["list-sites", "--kwargs", f"sites_path={sites_file}", f"sqlite_path={db_path}", "enabled_sites=Acme"])

    out = capsys.readouterr().out
    assert rc == cli.EXIT_OK
    rows = {line.split("|")[1].strip(): line for line in out.splitlines() if line.startswith("| ")}
    assert set(rows) == {"SITE", "Acme", "Globex", "Initech"}
    assert "| yes " in rows["Acme"] and "| 2 " in rows["Acme"]
    assert "| no " in rows["Initech"] and "| static " in rows["Initech"]


def test_list_sites_without_sites_is_setup_error(capsys):
    assert cli.main(["list-sites"]) == cli.EXIT_SETUP


def test_watch_rejects_non_positive_interval(capsys):
    assert cli.main(["watch", "--minutes", "0"]) == cli.EXIT_SETUP


def test_subcommand_required():
    with pytest.raises(SystemExit):
        cli.main([])
