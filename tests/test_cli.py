import json
import sqlite3
import sys

import pytest

from traffic_telemetry import traffic_to_prometheus


@pytest.fixture
def database(tmp_path):
    path = tmp_path / 'app.db'
    conn = sqlite3.connect(str(path))
    conn.execute('CREATE TABLE events (id INTEGER PRIMARY KEY, kind TEXT)')
    conn.commit()
    conn.close()
    return str(path)


def test_cli_samples_and_dry_runs_remote_write(database, tmp_path, monkeypatch, capsys):
    debug_file = tmp_path / 'payload.json'
    monkeypatch.setattr(sys, 'argv', [
        'traffic-to-prometheus', database,
        '--interval', '0.02',
        '--duration', '0.2',
        '--query', "INSERT INTO events (kind) VALUES ('click')",
        '--query', 'SELECT count(*) FROM events',
        '--remote-write-url', 'http://localhost:9090/api/v1/write',
        '--dry-run',
        '--debug-file', str(debug_file),
    ])

    traffic_to_prometheus.main()

    out = capsys.readouterr().out
    assert 'Collected' in out
    assert 'Dry-run completed' in out
    payload = json.loads(debug_file.read_text(encoding='utf-8'))
    names = {
        label['value']
        for ts in payload['timeseries']
        for label in ts['labels']
        if label['name'] == '__name__'
    }
    assert 'traffic_statements_total' in names
    assert 'traffic_info' in names

    conn = sqlite3.connect(database)
    assert conn.execute('SELECT count(*) FROM events').fetchone()[0] > 0
    conn.close()


def test_cli_rejects_invalid_interval(database, monkeypatch, capsys):
    monkeypatch.setattr(sys, 'argv', ['traffic-to-prometheus', database, '--interval', '0'])
    with pytest.raises(SystemExit) as excinfo:
        traffic_to_prometheus.main()
    assert excinfo.value.code == 1
    assert 'interval' in capsys.readouterr().err


def test_replay_queries_warns_and_continues(database, capsys):
    from traffic_telemetry.sources import SQLiteCounterSource

    source = SQLiteCounterSource(database)
    try:
        traffic_to_prometheus.replay_queries(source, ['SELECT * FROM nope', "INSERT INTO events (kind) VALUES ('x')"])
        assert source.execute('SELECT count(*) FROM events') == [(1,)]
    finally:
        source.close()
    assert 'query failed' in capsys.readouterr().err
