"""Tests for the command line entry point."""

import json

from kenibox import __main__ as cli
from kenibox.service import PROBES, ProbeService
from kenibox.session import Session


def test_list_prints_every_probe(capsys):
    assert cli.main(['--list']) == 0
    assert capsys.readouterr().out.split() == list(PROBES)


def test_run_headless_prints_results(make_provider, config, capsys):
    service = ProbeService(provider=make_provider(), config=config, session=Session())
    assert cli.run_headless(service, ['check_usb_disconnection']) == 0
    assert json.loads(capsys.readouterr().out) == {'check_usb_disconnection': {'disconnected': False, 'details': []}}


def test_run_headless_reports_failures(make_provider, config, capsys):
    service = ProbeService(provider=make_provider(), config=config, session=Session())
    assert cli.run_headless(service, ['check_usb_disconnection', 'no_such_probe']) == 1


def test_run_headless_exports(make_provider, config, tmp_path):
    service = ProbeService(provider=make_provider(), config=config, session=Session())
    target = tmp_path / 'report.json'
    cli.run_headless(service, ['get_command_history'], export=str(target))
    assert json.loads(target.read_text(encoding='utf-8'))['results'] == {'get_command_history': []}


def test_exception_logger_writes_crash_log(tmp_path, monkeypatch, mocker):
    monkeypatch.chdir(tmp_path)
    hook = mocker.patch('sys.__excepthook__')
    (tmp_path / 'crash.log').write_text('old')
    try: raise RuntimeError('boom')
    except RuntimeError as e: cli.exception_logger(type(e), e, e.__traceback__)
    assert 'RuntimeError: boom' in (tmp_path / 'crash(1).log').read_text(encoding='utf-8')
    hook.assert_called_once()
