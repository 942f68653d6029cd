"""
Tests for configuration loading, logging setup, and the headless runner.
"""
import json
import logging

import numpy as np
import pytest

import main
from particle import generate_initial_state
from utils import load_config, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging replaces the root handlers; drop the ones it added."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def write_config(tmp_path, **overrides):
    config = {
        "simulation_parameters": {
            "seed": 1,
            "particle_count": 64,
            "strategy": "coherent",
            "scene_scale": 20.0,
        },
        "run_control": {
            "max_steps": 4,
            "log_throttle_steps": 2,
            "profile": False,
            "run_sort_self_test": True,
        },
        "logging": {
            "level": "DEBUG",
            "log_file": str(tmp_path / "logs" / "boids.log"),
        },
    }
    for section, values in overrides.items():
        config[section].update(values)
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return path


class TestConfig:

    def test_missing_sections_default_to_empty(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"simulation_parameters": {"particle_count": 10}}')

        config = load_config(str(path))

        assert config["simulation_parameters"] == {"particle_count": 10}
        assert config["run_control"] == {}
        assert config["logging"] == {}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "absent.json"))

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(json.JSONDecodeError):
            load_config(str(path))

    def test_non_object_document(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ValueError):
            load_config(str(path))


class TestLogging:

    def test_creates_rotating_log_file(self, tmp_path):
        log_file = tmp_path / "nested" / "run.log"
        setup_logging({"logging": {"level": "info", "log_file": str(log_file)}})

        logging.info("hello from the flock")

        assert log_file.exists()
        assert "hello from the flock" in log_file.read_text()
        assert logging.getLogger().level == logging.INFO

    def test_file_handler_can_be_disabled(self):
        setup_logging({"logging": {"log_file": None}})

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.StreamHandler)


class TestInitialState:

    def test_seeded_and_bounded(self):
        positions, velocities = generate_initial_state(500, 50.0, 1.0, seed=8)
        again, _ = generate_initial_state(500, 50.0, 1.0, seed=8)

        assert positions.dtype == np.float32
        assert velocities.dtype == np.float32
        np.testing.assert_array_equal(positions, again)
        assert np.all(np.abs(positions) <= 50.0)
        assert np.all(np.linalg.norm(velocities, axis=1) <= 1.0 + 1e-6)


class TestRunner:

    def test_sort_self_test_passes(self):
        assert main.run_sort_self_test()

    def test_sort_self_test_reports_broken_sort(self, monkeypatch):
        import grid
        monkeypatch.setattr(grid, "sort_by_cell", lambda keys, values: keys[::-1].sort())
        assert not main.run_sort_self_test()

    def test_full_run(self, tmp_path):
        path = write_config(tmp_path)

        main.main(str(path))

        log_text = (tmp_path / "logs" / "boids.log").read_text()
        assert "Sort self-test passed." in log_text
        assert "Simulation step 4/4" in log_text
        assert "Shutting Down" in log_text

    def test_full_run_with_profile(self, tmp_path):
        path = write_config(tmp_path, run_control={"profile": True, "run_sort_self_test": False},
                            simulation_parameters={"strategy": "scattered"})

        main.main(str(path))

        log_text = (tmp_path / "logs" / "boids.log").read_text()
        assert "Performance Profile" in log_text
        assert "Sort self-test" not in log_text

    def test_missing_config_is_fatal(self, tmp_path, capsys):
        main.main(str(tmp_path / "absent.json"))

        assert "FATAL" in capsys.readouterr().out
