"""Top-level pytest configuration.

The plugin itself is loaded through its ``pytest11`` entry point, so nothing
is declared here beyond the fixtures the test suite needs.
"""

# Enable pytester fixture for internal tests only (not installed runtime).
pytest_plugins = ["pytester"]
