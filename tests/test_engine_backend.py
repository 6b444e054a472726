"""
RebateEngine（服务端薄封装）与命令行一次性计算测试
"""
import pytest

import main as cli
from backend.engine.engine import OUT_RESULT, EngineConfig, RebateEngine
from rebate.loader import load_order_table
from rebate.rulebook import RuleBookError


@pytest.fixture
def engine(tmp_path):
    return RebateEngine(EngineConfig(runtime_dir=tmp_path / "runtime"))


@pytest.mark.integration
class TestRebateEngine:

    def test_config_dirs(self, tmp_path):
        cfg = EngineConfig(runtime_dir=tmp_path)
        assert cfg.uploads_dir == tmp_path / "uploads"
        assert cfg.outputs_dir == tmp_path / "outputs"
        assert cfg.logs_dir == tmp_path / "logs"

    def test_requires_rules(self, engine):
        assert not engine.loaded
        assert engine.meta() == {"loaded": False}
        with pytest.raises(RuntimeError):
            engine.compute([])

    def test_failed_load_keeps_previous(self, engine, rules_file, tmp_path):
        engine.load_rules(rules_file)
        bad = tmp_path / "bad.csv"
        bad.write_text("a\n", encoding="utf-8")
        with pytest.raises(RuleBookError):
            engine.load_rules(bad)
        assert engine.meta()["rules_file"] == "rules.xlsx"

    def test_step_methods_match_compute(self, engine, rules_file, orders_file):
        engine.load_rules(rules_file)
        records = load_order_table(orders_file).records

        merged = engine.merge(records)
        groups = engine.aggregate_group_quantities(records)
        bombs = engine.aggregate_bomb_quantities(records)
        assert groups["SO1__P1__12.00"] == 10
        assert bombs == {}

        stepwise = [engine.evaluate(line, groups.get(key, 0.0)) for key, line in merged.items()]
        assert stepwise == [res for _, res in engine.compute(records)]

    def test_run_batch(self, engine, rules_file, orders_file, tmp_path):
        engine.load_rules(rules_file)
        out_dir = tmp_path / "job1"
        report = engine.run_batch(orders_file, out_dir)

        assert (out_dir / OUT_RESULT).exists()
        assert report["count_lines"] == 4
        assert report["count_eligible"] == 1
        assert report["total_rebate"] == pytest.approx(10)


@pytest.mark.integration
class TestCommandLine:

    def test_run_once(self, rules_file, orders_file, tmp_path, capsys):
        out = cli.run_once(rules_file, orders_file, tmp_path / "result.xlsx")
        assert out == tmp_path / "result.xlsx"
        assert out.exists()

        text = capsys.readouterr().out
        assert "[4/4]" in text
        assert "计算完成（4 行，返利 1 行）" in text

    def test_run_once_bad_rules(self, orders_file, tmp_path, capsys, rule_xlsx, rule_table, rule_row):
        bad = rule_xlsx(tmp_path / "bad.xlsx", rule_table(rule_row()), sheet_name="Sheet1")
        assert cli.run_once(bad, orders_file, tmp_path / "result.xlsx") is None
        assert "载入数据失败" in capsys.readouterr().out
        assert not (tmp_path / "result.xlsx").exists()

    def test_main_with_arguments(self, rules_file, orders_file, tmp_path, monkeypatch):
        monkeypatch.setenv("REBATE_RUNTIME_DIR", str(tmp_path / "runtime"))
        out = tmp_path / "cli.xlsx"
        with pytest.raises(SystemExit) as exc:
            cli.main([str(rules_file), str(orders_file), str(out)])
        assert exc.value.code == 0
        assert out.exists()

    def test_interactive_quit(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("REBATE_RUNTIME_DIR", str(tmp_path / "runtime"))
        monkeypatch.setattr("builtins.input", lambda _prompt: "q")
        cli.main([])
        assert "程序已退出" in capsys.readouterr().out
