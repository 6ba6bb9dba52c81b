import unittest

from botocore.exceptions import EndpointConnectionError

from rws_lambda.clients import ClientRegistry
from rws_lambda.permissions import REQUIRED_ACTIONS, PermissionChecker

from .fakes import ROLE_ARN, FakeIAM, client_error, make_config


class AWSPermissionCheck(unittest.TestCase):
    def checker(self, iam: FakeIAM) -> PermissionChecker:
        clients = ClientRegistry(make_config())
        clients.register("iam", iam)
        return PermissionChecker(clients)

    def test_all_actions_allowed(self):
        iam = FakeIAM()
        report = self.checker(iam).check_permissions(ROLE_ARN)
        self.assertTrue(report.ok)
        self.assertEqual(report.denied_actions, [])
        self.assertEqual(iam.calls[0][1]["PolicySourceArn"], ROLE_ARN)

    def test_denied_actions_reported_exactly(self):
        denied = ["lambda:CreateFunction", "ec2:CreateVpcEndpoint"]
        report = self.checker(FakeIAM(denied)).check_permissions(ROLE_ARN)
        self.assertFalse(report.ok)
        # evaluation order follows the catalogue
        self.assertEqual(report.denied_actions, ["lambda:CreateFunction", "ec2:CreateVpcEndpoint"])

    def test_all_pages_are_consumed(self):
        iam = FakeIAM(["cloudwatch:GetMetricData"], page_size=5)
        report = self.checker(iam).check_permissions(ROLE_ARN)
        self.assertEqual(report.denied_actions, ["cloudwatch:GetMetricData"])
        pages = (len(REQUIRED_ACTIONS) + 4) // 5
        self.assertEqual(iam.count("simulate_principal_policy"), pages)

    def test_custom_action_subset(self):
        report = self.checker(FakeIAM(["s3:PutObject"])).check_permissions(
            ROLE_ARN, ["s3:GetObject", "s3:PutObject"]
        )
        self.assertEqual(report.denied_actions, ["s3:PutObject"])

    def test_api_failure_fails_closed(self):
        iam = FakeIAM()
        iam.fail_next("simulate_principal_policy", client_error("NoSuchEntity", "role not found", 404))
        report = self.checker(iam).check_permissions(ROLE_ARN)
        self.assertFalse(report.ok)
        self.assertEqual(report.denied_actions, [])

    def test_connection_failure_fails_closed(self):
        iam = FakeIAM()
        iam.fail_next(
            "simulate_principal_policy",
            EndpointConnectionError(endpoint_url="https://iam.amazonaws.com"),
        )
        report = self.checker(iam).check_permissions(ROLE_ARN)
        self.assertFalse(report.ok)
        self.assertEqual(report.serialize(), {"ok": False, "denied_actions": []})
