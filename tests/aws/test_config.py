import os
import unittest
from unittest import mock

from rws_lambda.config import AWSConfig
from rws_lambda.exceptions import ConfigurationError

from .fakes import ROLE_ARN


class AWSConfigTest(unittest.TestCase):
    config = {
        "aws": {
            "region": "eu-central-1",
            "credentials": {"access_key": "AKIAEXAMPLE", "secret_key": "secret"},
            "lambda_role": ROLE_ARN,
            "lambda_bucket": "rws-deployments",
            "function": {"runtime": "nodejs20.x", "memory": 1024},
            "wait": {"max_attempts": 3},
        }
    }

    def test_deserialize(self):
        config = AWSConfig.deserialize(self.config)
        self.assertEqual(config.region, "eu-central-1")
        self.assertEqual(config.credentials.access_key, "AKIAEXAMPLE")
        self.assertEqual(config.resources.lambda_role, ROLE_ARN)
        self.assertEqual(config.resources.lambda_bucket, "rws-deployments")
        self.assertEqual(config.resources.runtime, "nodejs20.x")
        self.assertEqual(config.resources.memory, 1024)
        self.assertEqual(config.resources.handler, "index.handler")
        self.assertEqual(config.wait, {"max_attempts": 3})

    def test_serialize_masks_credentials(self):
        serialized = AWSConfig.deserialize(self.config).serialize()
        self.assertNotIn("secret", str(serialized["credentials"]))
        self.assertEqual(serialized["resources"]["lambda_bucket"], "rws-deployments")

    def test_legacy_flat_keys(self):
        config = AWSConfig.deserialize(
            {
                "aws_lambda_region": "us-west-2",
                "aws_access_key": "AKIALEGACY",
                "aws_secret_key": "legacy-secret",
                "aws_lambda_role": ROLE_ARN,
                "aws_lambda_bucket": "legacy-bucket",
            }
        )
        self.assertEqual(config.region, "us-west-2")
        self.assertEqual(config.credentials.secret_key, "legacy-secret")
        self.assertEqual(config.resources.lambda_bucket, "legacy-bucket")

    @mock.patch.dict(
        os.environ,
        {
            "AWS_ACCESS_KEY_ID": "AKIAENV",
            "AWS_SECRET_ACCESS_KEY": "env-secret",
            "AWS_DEFAULT_REGION": "ap-south-1",
        },
    )
    def test_environment_fallback(self):
        config = AWSConfig.deserialize({"aws": {"lambda_role": ROLE_ARN}})
        self.assertEqual(config.credentials.access_key, "AKIAENV")
        self.assertEqual(config.region, "ap-south-1")
        self.assertFalse(config.resources.has_lambda_bucket)
        with self.assertRaises(ConfigurationError):
            config.resources.lambda_bucket

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_missing_credentials(self):
        with self.assertRaises(ConfigurationError):
            AWSConfig.deserialize({"aws": {"region": "us-east-1", "lambda_role": ROLE_ARN}})

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_missing_region(self):
        dct = {"aws": dict(self.config["aws"])}
        del dct["aws"]["region"]
        with self.assertRaises(ConfigurationError):
            AWSConfig.deserialize(dct)

    def test_missing_role(self):
        dct = {"aws": dict(self.config["aws"])}
        del dct["aws"]["lambda_role"]
        with self.assertRaises(ConfigurationError):
            AWSConfig.deserialize(dct)
