"""IAM permission preflight for the Lambda commands.

The check simulates the role's policies against the actions the orchestrator
needs, before any cloud resource is touched.
"""

from typing import List, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from rws_lambda.clients import ClientRegistry
from rws_lambda.utils import LoggingBase

REQUIRED_ACTIONS = [
    "lambda:CreateFunction",
    "lambda:UpdateFunctionCode",
    "lambda:UpdateFunctionConfiguration",
    "lambda:InvokeFunction",
    "lambda:ListFunctions",
    "s3:GetObject",
    "s3:PutObject",
    "elasticfilesystem:CreateFileSystem",
    "elasticfilesystem:DeleteFileSystem",
    "elasticfilesystem:DescribeFileSystems",
    "elasticfilesystem:CreateAccessPoint",
    "elasticfilesystem:DeleteAccessPoint",
    "elasticfilesystem:DescribeAccessPoints",
    "elasticfilesystem:CreateMountTarget",
    "elasticfilesystem:DeleteMountTarget",
    "elasticfilesystem:DescribeMountTargets",
    "ec2:CreateSecurityGroup",
    "ec2:DescribeSecurityGroups",
    "ec2:DescribeSubnets",
    "ec2:DescribeVpcs",
    "ec2:CreateVpcEndpoint",
    "ec2:DescribeVpcEndpoints",
    "ec2:ModifyVpcEndpoint",
    "ec2:DeleteVpcEndpoint",
    "cloudwatch:PutMetricData",
    "cloudwatch:GetMetricData",
]


class PermissionReport:
    """Outcome of one preflight check. Never cached."""

    def __init__(self, ok: bool, denied_actions: List[str]):
        self.ok = ok
        self.denied_actions = denied_actions

    def serialize(self) -> dict:
        return {"ok": self.ok, "denied_actions": self.denied_actions}

    def __repr__(self) -> str:
        return f"PermissionReport(ok={self.ok}, denied_actions={self.denied_actions})"


class PermissionChecker(LoggingBase):
    def __init__(self, clients: ClientRegistry):
        super().__init__()
        self._clients = clients

    @staticmethod
    def typename() -> str:
        return "AWS.Permissions"

    def check_permissions(
        self, role_arn: str, actions: Sequence[str] = REQUIRED_ACTIONS
    ) -> PermissionReport:
        """Simulate the role's policies for `actions`.

        Each action evaluated to anything other than `allowed` is reported as
        denied. An API failure fails closed: `ok` is False and no actions are
        listed.
        """
        iam_client = self._clients.get_iam_client()
        denied: List[str] = []
        params = {"PolicySourceArn": role_arn, "ActionNames": list(actions)}
        try:
            while True:
                response = iam_client.simulate_principal_policy(**params)
                for result in response.get("EvaluationResults", []):
                    if result.get("EvalDecision") != "allowed":
                        denied.append(result["EvalActionName"])
                if not response.get("IsTruncated"):
                    break
                params["Marker"] = response["Marker"]
        except (ClientError, BotoCoreError) as e:
            self.logging.error("Permission check error:")
            self.logging.error(str(e))
            return PermissionReport(False, [])

        return PermissionReport(len(denied) == 0, denied)
