"""Tests for spatepi.cli — argument parsing and the workshop entry point."""

import json
import logging
from pathlib import Path

import pytest
import yaml

from spatepi import __version__
from spatepi.cli import build_parser, main, resolve_config

SCENARIOS = Path(__file__).resolve().parent.parent / "configs" / "scenarios"


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logging.getLogger("spatepi").handlers.clear()


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.config is None
        assert args.sections is None
        assert not args.no_figures

    def test_sections_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--sections', 'network'])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            build_parser().parse_args(['--version'])
        assert exc.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_flags_become_overrides(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        args = build_parser().parse_args([
            '--seed', '3', '--sections', 'points', 'areal',
            '--output-dir', 'out', '--no-figures',
        ])
        cfg = resolve_config(args)
        assert cfg.workshop.seed == 3
        assert cfg.workshop.sections == ['points', 'areal']
        assert cfg.output.output_dir == 'out'
        assert cfg.output.save_figures is False

    def test_scenario_without_base(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        args = build_parser().parse_args(['--scenario', str(SCENARIOS / 'quick.yaml')])
        cfg = resolve_config(args)
        assert cfg.workshop.permutations == 99
        assert cfg.areal.nrows == 6


class TestMain:
    def test_runs_areal_section(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        out_dir = tmp_path / 'run'
        code = main([
            '--scenario', str(SCENARIOS / 'quick.yaml'),
            '--sections', 'areal', '--seed', '5',
            '--output-dir', str(out_dir), '--no-figures',
            '--log-level', 'WARNING',
        ])
        assert code == 0
        summary_path = out_dir / 'summary.json'
        assert str(summary_path) in capsys.readouterr().out
        with open(summary_path) as f:
            summary = json.load(f)
        assert list(summary['sections']) == ['areal']
        assert summary['seed'] == 5

    def test_bad_config_exits_2(self, tmp_path):
        bad = tmp_path / 'bad.yaml'
        bad.write_text(yaml.safe_dump({'geostat': {'model': 'linearish'}}))
        with pytest.raises(SystemExit) as exc:
            main([str(bad)])
        assert exc.value.code == 2

    def test_missing_config_exits_2(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path / 'nope.yaml')])
        assert exc.value.code == 2

    def test_bad_log_level_exits_2(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        with pytest.raises(SystemExit) as exc:
            main(['--log-level', 'LOUD', '--output-dir', str(tmp_path)])
        assert exc.value.code == 2
