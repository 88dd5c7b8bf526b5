pytest_plugins = ["ervilla.TESTING.pytest_plugin"]
