# test_runner.py is a script for the testtools runner, not a test module
collect_ignore = ["test_runner.py"]
