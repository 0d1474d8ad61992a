"""
Tests for the command line entry point.
"""

import json

import pytest

from cli import main
from services.session import BookkeeperSession

CSV = (
    "Date,Type,Platform,Pair,Amount,Price,Fee,Notes\n"
    "2025-01-01 10:00,Buy,Binance,BTC/USDT,1,100,1,first\n"
    "2025-01-11 10:00,Sell,Binance,BTC/USDT,1,120,1,\n"
)


class TestCli:

    def test_import_then_stats_and_list(self, tmp_path, capsys):
        path = tmp_path / 'in.csv'
        path.write_text(CSV, encoding='utf-8')
        assert main(['import-csv', str(path)]) == 0
        assert 'Imported 2' in capsys.readouterr().out

        assert main(['stats']) == 0
        out = capsys.readouterr().out
        assert 'Realized PnL:  18.00' in out

        assert main(['list', '--pnl', 'profit', '--coin', 'btc']) == 0
        assert '1 row(s)' in capsys.readouterr().out

    def test_bad_csv_exits_nonzero(self, tmp_path, capsys):
        path = tmp_path / 'bad.csv'
        path.write_text("Date,Type,Platform,Pair,Amount,Price\n2025-01-01,Hold,x,BTC,1,1\n", encoding='utf-8')
        assert main(['import-csv', str(path)]) == 1
        assert 'Row 2' in capsys.readouterr().err
        assert BookkeeperSession.load().store.all() == []

    def test_export_and_backup(self, tmp_path):
        src = tmp_path / 'in.csv'
        src.write_text(CSV, encoding='utf-8')
        main(['import-csv', str(src)])

        out_csv = tmp_path / 'out.csv'
        assert main(['export-csv', str(out_csv)]) == 0
        assert out_csv.read_text(encoding='utf-8').count('\n') == 3

        backup = tmp_path / 'backup.json'
        assert main(['backup-export', str(backup)]) == 0
        assert len(json.loads(backup.read_text(encoding='utf-8'))['data']['transactions']) == 2
        assert main(['backup-import', str(backup)]) == 0

        broken = tmp_path / 'broken.json'
        broken.write_text('{}', encoding='utf-8')
        assert main(['backup-import', str(broken)]) == 1

    def test_trash_and_calendar(self, tmp_path, capsys):
        src = tmp_path / 'in.csv'
        src.write_text(CSV, encoding='utf-8')
        main(['import-csv', str(src)])
        session = BookkeeperSession.load()
        sell = next(tx for tx in session.store.all() if tx.is_sell)
        session.store.soft_delete(sell.id)
        capsys.readouterr()

        assert main(['list', '--trash']) == 0
        assert '1 row(s)' in capsys.readouterr().out
        assert main(['calendar', '--year', '2025', '--month', '1']) == 0
        assert 'Month total: 0.00' in capsys.readouterr().out

    def test_out_of_range_month_is_a_usage_error(self, capsys):
        """argparse rejects the value before any date arithmetic runs."""
        with pytest.raises(SystemExit) as exc:
            main(['list', '--range', 'month', '--month', '13'])
        assert exc.value.code == 2
        with pytest.raises(SystemExit):
            main(['calendar', '--month', '0'])
        with pytest.raises(SystemExit):
            main(['list', '--range', 'custom', '--start', '2025/01/01'])
        with pytest.raises(SystemExit):
            main(['fiat', '--month', '2025-13'])
