import json
import os
import tempfile
import unittest
from unittest import mock

from click.testing import CliRunner

from rws_lambda.cli import cli
from rws_lambda.context import DeploymentContext
from rws_lambda.version import __version__

from .fakes import BUCKET, REGION, ROLE_ARN, FakeCloud, write_function


class LambdaCLI(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        root = self.tmp_dir.name
        self.functions_dir = os.path.join(root, "lambda-functions")
        self.payloads_dir = os.path.join(root, "payloads")
        self.cache_dir = os.path.join(root, "cache")
        os.makedirs(self.payloads_dir)
        write_function(self.functions_dir, "worker")
        write_function(self.functions_dir, "efs-loader")

        self.config_path = os.path.join(root, "config.json")
        with open(self.config_path, "w") as f:
            json.dump(
                {
                    "aws": {
                        "region": REGION,
                        "credentials": {"access_key": "AKIAFAKEFAKEFAKE", "secret_key": "secret"},
                        "lambda_role": ROLE_ARN,
                        "lambda_bucket": BUCKET,
                        "wait": {"max_attempts": 10, "interval": 0, "backoff": 1, "max_interval": 0},
                    }
                },
                f,
            )

        self.cloud = FakeCloud()
        real_create = DeploymentContext.create

        def create(*args, **kwargs):
            context = real_create(*args, **kwargs)
            self.cloud.register(context)
            context.log_tail.poll_interval = 0
            context.log_tail.idle_timeout = 0
            return context

        create_patcher = mock.patch("rws_lambda.cli.DeploymentContext.create", side_effect=create)
        self.create = create_patcher.start()
        self.addCleanup(create_patcher.stop)
        interrupt_patcher = mock.patch("rws_lambda.cli.catch_interrupt")
        interrupt_patcher.start()
        self.addCleanup(interrupt_patcher.stop)

        self.runner = CliRunner()

    def tearDown(self):
        self.tmp_dir.cleanup()

    def invoke(self, *args, config=True):
        cmd = ["lambda", *args]
        if config:
            cmd += ["--config", self.config_path]
        cmd += [
            "--functions-dir",
            self.functions_dir,
            "--payloads-dir",
            self.payloads_dir,
            "--cache",
            self.cache_dir,
            "--project-dir",
            self.tmp_dir.name,
        ]
        return self.runner.invoke(cli, cmd)

    def test_version(self):
        result = self.runner.invoke(cli, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn(__version__, result.output)

    def test_list(self):
        self.cloud.lambda_.add_function("RWS-worker")
        self.cloud.lambda_.add_function("OTHER-foo")
        output_json = os.path.join(self.tmp_dir.name, "result.json")
        result = self.invoke("list", "--output-json", output_json)
        self.assertEqual(result.exit_code, 0, result.output)

        with open(output_json) as f:
            written = json.load(f)
        self.assertEqual(written["state"], "Done")
        self.assertEqual([f["name"] for f in written["data"]], ["RWS-worker"])

    def test_deploy(self):
        result = self.invoke("deploy:worker", "--subnet-id", "subnet-1", "--vpc-id", "vpc-1")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("RWS-worker", self.cloud.lambda_.functions)

    def test_deploy_without_efs(self):
        result = self.invoke("deploy:worker", "--no-efs")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.cloud.lambda_.functions["RWS-worker"]["FileSystemConfigs"], [])
        self.assertEqual(self.cloud.efs.calls, [])

    def test_region_override(self):
        self.invoke("list", "--region", "eu-west-1")
        user_config = self.create.call_args[0][0]
        self.assertEqual(user_config["aws"]["region"], "eu-west-1")
        self.assertEqual(user_config["aws"]["lambda_bucket"], BUCKET)

    def test_missing_function_exit_code(self):
        result = self.invoke("delete:missing")
        self.assertEqual(result.exit_code, 2)

    def test_unknown_command_exit_code(self):
        result = self.invoke("explode:worker")
        self.assertEqual(result.exit_code, 1)
        self.assertEqual(self.cloud.iam.calls, [])

    def test_denied_permissions_exit_code(self):
        self.cloud.iam.denied = {"lambda:InvokeFunction"}
        result = self.invoke("list")
        self.assertEqual(result.exit_code, 1)
        self.assertIn("lambda:InvokeFunction", result.output)
        self.assertEqual(self.cloud.lambda_.calls, [])

    def test_empty_lambda_string(self):
        result = self.invoke("")
        self.assertEqual(result.exit_code, 2)
        self.create.assert_not_called()

    def test_missing_configuration(self):
        environment = {k: v for k, v in os.environ.items() if not k.startswith("AWS_")}
        with mock.patch.dict(os.environ, environment, clear=True):
            result = self.invoke("list", config=False)
        self.assertEqual(result.exit_code, 1)
        self.assertEqual(self.cloud.iam.calls, [])
