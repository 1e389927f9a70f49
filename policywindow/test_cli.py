"""
Tests for the command-line interface
"""

import json

import numpy as np
import pandas as pd
import pytest

from policywindow.cli import main
from policywindow.config import AnalysisConfig, load_config_from_file, save_config_to_file


@pytest.fixture(autouse=True)
def clean_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv('POLICYWINDOW_CONFIG', raising=False)
    monkeypatch.delenv('POLICYWINDOW_OUTPUT_DIR', raising=False)


@pytest.fixture
def data_file(tmp_path):
    rng = np.random.default_rng(8)
    dates = pd.date_range('2021-01-01', '2022-12-31', freq='D')
    values = np.empty(len(dates))
    values[0] = 20.0
    for t in range(1, len(dates)):
        values[t] = 8.0 + 0.6 * values[t - 1] + rng.normal(0, 1.0)
    frame = pd.DataFrame({'date_local': dates.strftime('%Y-%m-%d'), 'daily_avg': values})
    # drop a few days to exercise gap completion
    frame = frame.drop(index=[40, 41, 300])
    path = tmp_path / 'no2.csv'
    frame.to_csv(path, index=False)
    return path


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'fast.json'
    save_config_to_file(AnalysisConfig(spline_df=4, n_lags_max=5, gammas=[0.0, 1.0],
                                       scan_first='2022-01-01', scan_last='2022-11-01'), path)
    return path


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert 'usage' in capsys.readouterr().out


def test_config_create(tmp_path):
    output = tmp_path / 'template.json'

    assert main(['config', 'create', '--output', str(output)]) == 0
    assert load_config_from_file(output) == AnalysisConfig()


def test_config_validate(tmp_path, config_file, capsys):
    assert main(['config', 'validate', str(config_file)]) == 0
    assert 'is valid' in capsys.readouterr().out

    broken = tmp_path / 'broken.json'
    broken.write_text(json.dumps({'window_length_days': 0, 'cov_type': 'HC9'}))
    assert main(['config', 'validate', str(broken)]) == 1
    assert 'window_length_days' in capsys.readouterr().out


def test_config_validate_unknown_key(tmp_path):
    path = tmp_path / 'unknown.json'
    path.write_text(json.dumps({'window': 30}))

    assert main(['config', 'validate', str(path)]) == 1


def test_config_show(config_file, capsys):
    assert main(['config', 'show', '--config', str(config_file)]) == 0
    assert 'spline_df' in capsys.readouterr().out


def test_test_command_writes_results(tmp_path, data_file, config_file):
    output = tmp_path / 'results'

    code = main(['--quiet', 'test', '--data', str(data_file), '--config', str(config_file),
                 '--policy-start', '2022-08-01', '--ci-multiplier', '1.96', '--output', str(output)])

    assert code == 0
    summary = json.loads((output / 'summary.json').read_text())
    assert summary['policy_window']['start'] == '2022-08-01'
    assert summary['config']['ci_multiplier'] == 1.96
    assert 'sensitivity' not in summary
    assert (output / 'residuals.csv').exists()
    assert not (output / 'sensitivity_scan.csv').exists()


def test_scan_command_writes_scan(tmp_path, data_file, config_file):
    output = tmp_path / 'results'

    code = main(['--quiet', 'scan', '--data', str(data_file), '--config', str(config_file),
                 '--max-workers', '2', '--output', str(output)])

    assert code == 0
    scan = pd.read_csv(output / 'sensitivity_scan.csv')
    assert len(scan) == 11
    assert scan['is_policy'].sum() == 1


def test_missing_data_file(tmp_path, config_file):
    assert main(['--quiet', 'test', '--data', str(tmp_path / 'absent.csv'),
                 '--config', str(config_file)]) == 1


def test_policy_start_outside_data(tmp_path, data_file, config_file):
    assert main(['--quiet', 'test', '--data', str(data_file), '--config', str(config_file),
                 '--policy-start', '2030-01-01', '--output', str(tmp_path / 'out')]) == 1


def test_config_validate_wrong_type(tmp_path, capsys):
    path = tmp_path / 'typed.json'
    path.write_text(json.dumps({'window_length_days': '30'}))

    assert main(['config', 'validate', str(path)]) == 1
    assert 'window_length_days must be an integer' in capsys.readouterr().out


def test_unexpected_error_returns_failure(tmp_path, data_file, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr('policywindow.cli.save_results', broken)
    config = tmp_path / 'fast.json'
    save_config_to_file(AnalysisConfig(spline_df=4, n_lags_max=5, gammas=[0.0]), config)

    assert main(['--quiet', 'test', '--data', str(data_file), '--config', str(config),
                 '--output', str(tmp_path / 'out')]) == 1
