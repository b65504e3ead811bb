"""Shared pytest fixtures and markers for all tests."""

import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "parallel: marks tests that start worker processes"
    )


ROI_LOGIC = 'return {"roi": investment * (0.8 + random() * 0.4)}'


def make_config(logic: str = ROI_LOGIC, parameters=None, outputs=None, **extra):
    """Build a ScenarioConfig with the investment/roi defaults."""
    from simforge.models.scenario import ScenarioConfig

    if parameters is None:
        parameters = [
            {
                "key": "investment",
                "label": "Investment",
                "type": "number",
                "default": 1000,
                "min": 0,
                "max": 1000000,
            }
        ]
    if outputs is None:
        outputs = [{"key": "roi", "label": "ROI"}]
    data = {
        "name": extra.pop("name", "Investment ROI"),
        "category": extra.pop("category", "Finance"),
        "description": extra.pop("description", "Return on a single investment"),
        "parameters": parameters,
        "outputs": outputs,
        "calculation_logic": logic,
    }
    data.update(extra)
    return ScenarioConfig.from_dict(data)


@pytest.fixture
def roi_config():
    """The investment/roi configuration used across the suite."""
    return make_config()


@pytest.fixture
def seeded_source():
    """Provide a RandomSource with a fixed seed."""
    from simforge.engine.random_source import RandomSource

    return RandomSource(seed=12345)


@pytest.fixture
def settings():
    """Serial engine settings independent of SIMFORGE_* variables."""
    from simforge.config import EngineSettings

    return EngineSettings(progress_interval=1)


@pytest.fixture(autouse=True)
def clean_simforge_env(monkeypatch):
    """Keep SIMFORGE_* variables from the shell out of every test."""
    import os

    for name in list(os.environ):
        if name.startswith("SIMFORGE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_factory():
    """Provide make_config() for tests that need custom configurations."""
    return make_config
