import numpy as np
import pytest

import orbital_cli
from physics import QuantumState


def _scripted(answers):
    it = iter(answers)
    prompts = []

    def fake_input(prompt):
        prompts.append(prompt)
        return next(it)

    return fake_input, prompts


def test_prompt_reasks_until_valid():
    fake_input, prompts = _scripted(["2", "2", "0", "x", "2", "1", "0"])
    out = []
    state = orbital_cli.prompt_quantum_numbers(input_fn=fake_input, output_fn=out.append)
    assert state == QuantumState(2, 1, 0)
    assert any("0 <= l <= n-1" in line for line in out)
    assert any("not an integer" in line for line in out)
    assert prompts == ["n = ", "l = ", "m = ", "n = ", "n = ", "l = ", "m = "]


def test_prompt_only_asks_for_missing_numbers():
    fake_input, prompts = _scripted(["-1"])
    state = orbital_cli.prompt_quantum_numbers(3, 1, None, input_fn=fake_input, output_fn=lambda s: None)
    assert state == QuantumState(3, 1, -1)
    assert prompts == ["m = "]


def test_prompt_propagates_eof():
    def closed(prompt):
        raise EOFError

    with pytest.raises(EOFError):
        orbital_cli.prompt_quantum_numbers(input_fn=closed, output_fn=lambda s: None)


def test_main_prompts_through_builtin_input(monkeypatch, capsys):
    # n=1 from the flag with l=1 is rejected, then the full triple 5,1,0 is read
    fake_input, prompts = _scripted(["1", "0", "5", "1", "0"])
    monkeypatch.setattr("builtins.input", fake_input)
    assert orbital_cli.main(["--n", "1", "--headless", "--samples", "300", "--seed", "1"]) == 0
    assert prompts == ["l = ", "m = ", "n = ", "l = ", "m = "]
    out = capsys.readouterr().out
    assert "0 <= l <= n-1" in out
    assert "5p" in out


def test_headless_run_and_export(tmp_path, capsys):
    target = tmp_path / "cloud.npz"
    code = orbital_cli.main(
        ["--n", "2", "--l", "1", "--m", "0", "--headless", "--samples", "2000",
         "--frames", "2", "--seed", "1", "--export", str(target)]
    )
    assert code == 0
    text = capsys.readouterr().out
    assert "frame 0" in text and "frame 1" in text
    assert "mean r" in text

    data = np.load(target)
    assert data["points"].shape == (2000, 3)
    assert list(data["quantum_numbers"]) == [2, 1, 0]
    assert float(data["r_max"]) > 5.0


def test_gui_path_reports_failed_initial_table(monkeypatch, caplog):
    import density_tables

    def failing(self, state):
        raise density_tables.DomainComputationFailure("density integrates to zero")

    monkeypatch.setattr(density_tables.DensityTableBuilder, "build", failing)
    assert orbital_cli.main(["--n", "2", "--l", "0", "--m", "0"]) == 1
    assert "Could not build density table" in caplog.text


def test_invalid_flags_exit_with_usage_error(capsys):
    with pytest.raises(SystemExit) as info:
        orbital_cli.main(["--n", "2", "--l", "2", "--m", "0", "--headless"])
    assert info.value.code == 2
    assert "0 <= l <= n-1" in capsys.readouterr().err


def test_batch_statistics():
    batch = orbital_cli.run_headless(
        QuantumState(1, 0, 0), samples=5000, seed=3, output_fn=lambda s: None
    )
    stats = orbital_cli.batch_statistics(batch, r_max=1e9)
    assert stats["count"] == 5000
    assert stats["mean_r"] == pytest.approx(1.5, abs=0.1)
    assert stats["fraction_at_r_max"] == 0.0
