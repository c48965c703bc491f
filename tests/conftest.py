"""Pytest configuration and shared fixtures."""

# The testing plugin is registered via a ``pytest11`` entry point
# (pyproject.toml).  This suite disables it (``-p no:smartthings2mqtt``)
# and loads it here instead: conftest-based loading happens after
# ``pytest-cov`` starts tracing, so the package import chain is measured.
pytest_plugins = ["smartthings2mqtt.testing._plugin"]
