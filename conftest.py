"""Pytest configuration for the Lifecycle Toolkit."""


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "concurrency: test exercises concurrent sessions"
    )
