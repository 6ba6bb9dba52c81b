import unittest

from rws_lambda.clients import ClientRegistry
from rws_lambda.exceptions import (
    NoDefaultVpc,
    NotFound,
    ProviderError,
    ResourceInconsistency,
    TransientProviderError,
)
from rws_lambda.vpc import ENDPOINT_NAME, NetworkPlacement, NetworkProvisioner

from .fakes import FakeEC2, client_error, make_config


class AWSNetworkProvisioner(unittest.TestCase):
    def setUp(self):
        self.ec2 = FakeEC2()
        clients = ClientRegistry(make_config())
        clients.register("ec2", self.ec2)
        self.network = NetworkProvisioner(clients)

    def test_default_subnet(self):
        placement = self.network.find_default_subnet_for_vpc()
        self.assertEqual(placement, NetworkPlacement("vpc-1", "subnet-1"))

    def test_no_default_vpc(self):
        self.ec2.default_vpc = None
        with self.assertRaises(NoDefaultVpc):
            self.network.find_default_subnet_for_vpc()

    def test_default_vpc_without_subnets(self):
        self.ec2.subnets = {}
        with self.assertRaises(NotFound):
            self.network.find_default_subnet_for_vpc()

    def test_placement_for_subnet(self):
        self.assertEqual(
            self.network.placement_for_subnet("subnet-2"), NetworkPlacement("vpc-1", "subnet-2")
        )
        with self.assertRaises(NotFound):
            self.network.placement_for_subnet("subnet-404")

    def test_security_groups(self):
        self.assertEqual(self.network.list_security_groups("vpc-1"), ["sg-1"])
        self.assertEqual(self.network.list_security_groups("vpc-2"), [])

    def test_security_groups_error_is_raised(self):
        self.ec2.fail_next("describe_security_groups", client_error("UnauthorizedOperation", status=403))
        with self.assertRaises(ProviderError) as ctx:
            self.network.list_security_groups("vpc-1")
        self.assertNotIsInstance(ctx.exception, TransientProviderError)
        self.assertIn("DescribeSecurityGroups", str(ctx.exception))

        self.ec2.fail_next("describe_security_groups", client_error("RequestLimitExceeded"))
        with self.assertRaises(TransientProviderError):
            self.network.list_security_groups("vpc-1")

    def test_default_route_table_has_no_subnet_associations(self):
        self.assertEqual(self.network.get_default_route_table("vpc-1")["RouteTableId"], "rtb-main")
        with self.assertRaises(ResourceInconsistency):
            self.network.get_default_route_table("vpc-2")

    def test_endpoint_created_once(self):
        first = self.network.create_vpc_endpoint_if_not_exist("vpc-1")
        second = self.network.create_vpc_endpoint_if_not_exist("vpc-1")
        self.assertEqual(first, second)
        self.assertEqual(self.ec2.count("create_vpc_endpoint"), 1)

        request = dict(c for c in self.ec2.calls if c[0] == "create_vpc_endpoint")["create_vpc_endpoint"]
        self.assertEqual(request["ServiceName"], "com.amazonaws.us-east-1.s3")
        self.assertEqual(request["VpcEndpointType"], "Gateway")
        self.assertEqual(request["RouteTableIds"], ["rtb-main"])
        tags = self.ec2.endpoints[0]["Tags"]
        self.assertIn({"Key": "Name", "Value": ENDPOINT_NAME}, tags)

    def test_route_added_once(self):
        endpoint_id = self.network.create_vpc_endpoint_if_not_exist("vpc-1")
        self.assertTrue(self.network.ensure_route_to_vpc_endpoint("vpc-1", endpoint_id))
        self.assertFalse(self.network.ensure_route_to_vpc_endpoint("vpc-1", endpoint_id))
        self.assertEqual(self.ec2.count("create_route"), 1)
        route = [c for c in self.ec2.calls if c[0] == "create_route"][0][1]
        self.assertEqual(route["DestinationCidrBlock"], "0.0.0.0/0")
        self.assertEqual(route["RouteTableId"], "rtb-main")
