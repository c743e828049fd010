def pytest_configure(config):
    config.addinivalue_line(
        "markers", "performance: slow throughput checks (deselect with -m 'not performance')"
    )
