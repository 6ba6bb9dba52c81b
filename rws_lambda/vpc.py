"""VPC placement and the S3 gateway endpoint used by functions in private subnets."""

from typing import List, NamedTuple, Optional

from botocore.exceptions import ClientError

from rws_lambda.clients import ClientRegistry
from rws_lambda.exceptions import (
    NoDefaultVpc,
    NotFound,
    ResourceInconsistency,
    classify_client_error,
    error_code,
)
from rws_lambda.utils import LoggingBase

ENDPOINT_NAME = "RWS-S3-GATE"


class NetworkPlacement(NamedTuple):
    vpc_id: str
    subnet_id: str


class NetworkProvisioner(LoggingBase):
    """Finds the default network of the account and wires the S3 gateway endpoint.

    Both endpoint operations are idempotent: the endpoint is looked up by its
    `Name` tag and the route is only added when missing.
    """

    def __init__(self, clients: ClientRegistry):
        super().__init__()
        self._clients = clients

    @staticmethod
    def typename() -> str:
        return "AWS.VPC"

    @property
    def ec2(self):
        return self._clients.get_ec2_client()

    def find_default_subnet_for_vpc(self) -> NetworkPlacement:
        """Return the first subnet of the account's default VPC.

        Raises:
            NoDefaultVpc: when the account has no default VPC or it has no subnets
        """
        try:
            response = self.ec2.describe_vpcs(Filters=[{"Name": "isDefault", "Values": ["true"]}])
        except ClientError as e:
            self.logging.error(f"Error fetching default VPC: {e}")
            raise classify_client_error(e, "DescribeVpcs") from e

        vpcs = response.get("Vpcs", [])
        if not vpcs:
            self.logging.warning("No default VPC found.")
            raise NoDefaultVpc()

        vpc_id = vpcs[0]["VpcId"]
        subnet_id = self.get_subnet_id_for_vpc(vpc_id)
        if subnet_id is None:
            self.logging.warning(f"Default VPC {vpc_id} has no subnets.")
            raise NoDefaultVpc()
        self.logging.info(f"Using subnet {subnet_id} of default VPC {vpc_id}")
        return NetworkPlacement(vpc_id, subnet_id)

    def get_subnet_id_for_vpc(self, vpc_id: str) -> Optional[str]:
        result = self.ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])
        subnets = result.get("Subnets", [])
        if subnets:
            return subnets[0]["SubnetId"]
        return None

    def placement_for_subnet(self, subnet_id: str) -> NetworkPlacement:
        """Resolve the VPC of a subnet given without one.

        Raises:
            NotFound: when the subnet does not exist
        """
        try:
            result = self.ec2.describe_subnets(SubnetIds=[subnet_id])
        except ClientError as e:
            if error_code(e) == "InvalidSubnetID.NotFound":
                raise NotFound(f"Subnet {subnet_id} does not exist.") from e
            raise classify_client_error(e, "DescribeSubnets") from e
        subnets = result.get("Subnets", [])
        if not subnets:
            raise NotFound(f"Subnet {subnet_id} does not exist.")
        return NetworkPlacement(subnets[0]["VpcId"], subnet_id)

    def list_security_groups(self, vpc_id: Optional[str] = None) -> List[str]:
        params = {}
        if vpc_id:
            params["Filters"] = [{"Name": "vpc-id", "Values": [vpc_id]}]
        try:
            result = self.ec2.describe_security_groups(**params)
        except ClientError as e:
            raise classify_client_error(e, "DescribeSecurityGroups") from e
        return [group["GroupId"] for group in result.get("SecurityGroups", [])]

    def get_default_route_table(self, vpc_id: str) -> dict:
        """Return the route table of the VPC without explicit subnet associations."""
        response = self.ec2.describe_route_tables(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])
        for route_table in response.get("RouteTables", []):
            associations = route_table.get("Associations", [])
            if all(not assoc.get("SubnetId") for assoc in associations):
                return route_table
        raise ResourceInconsistency(f"VPC {vpc_id} has no default route table.")

    def create_vpc_endpoint_if_not_exist(self, vpc_id: str) -> str:
        existing = self.ec2.describe_vpc_endpoints(
            Filters=[
                {"Name": "tag:Name", "Values": [ENDPOINT_NAME]},
                {"Name": "vpc-id", "Values": [vpc_id]},
            ]
        )
        endpoints = existing.get("VpcEndpoints", [])
        if endpoints:
            endpoint_id = endpoints[0]["VpcEndpointId"]
            self.logging.info(f'VPC Endpoint "{ENDPOINT_NAME}" already exists: {endpoint_id}')
            return endpoint_id

        route_table = self.get_default_route_table(vpc_id)
        try:
            response = self.ec2.create_vpc_endpoint(
                VpcId=vpc_id,
                ServiceName=f"com.amazonaws.{self._clients.region}.s3",
                VpcEndpointType="Gateway",
                RouteTableIds=[route_table["RouteTableId"]],
                TagSpecifications=[
                    {
                        "ResourceType": "vpc-endpoint",
                        "Tags": [{"Key": "Name", "Value": ENDPOINT_NAME}],
                    }
                ],
            )
        except ClientError as e:
            self.logging.error(f"Failed to create VPC Endpoint: {e}")
            raise classify_client_error(e, "CreateVpcEndpoint") from e

        endpoint = response.get("VpcEndpoint")
        if not endpoint:
            raise ResourceInconsistency("Failed to create VPC Endpoint")
        self.logging.info(
            f'VPC Endpoint "{ENDPOINT_NAME}" created with ID: {endpoint["VpcEndpointId"]}'
        )
        return endpoint["VpcEndpointId"]

    def ensure_route_to_vpc_endpoint(self, vpc_id: str, endpoint_id: str) -> bool:
        """Add a catch-all route to the endpoint unless one already targets it.

        Returns:
            bool: True when a route was created
        """
        route_table = self.get_default_route_table(vpc_id)
        route_table_id = route_table["RouteTableId"]
        routes = route_table.get("Routes", [])
        if any(
            route.get("GatewayId") == endpoint_id or route.get("VpcEndpointId") == endpoint_id
            for route in routes
        ):
            self.logging.info(
                f"Route to VPC Endpoint {endpoint_id} already exists in Route Table {route_table_id}"
            )
            return False

        self.logging.info("Creating VPC Endpoint route")
        try:
            self.ec2.create_route(
                RouteTableId=route_table_id,
                DestinationCidrBlock="0.0.0.0/0",
                VpcEndpointId=endpoint_id,
            )
        except ClientError as e:
            self.logging.error(f"Error ensuring route to VPC Endpoint: {e}")
            raise classify_client_error(e, "CreateRoute") from e
        self.logging.info(f"Added route to VPC Endpoint {endpoint_id} in Route Table {route_table_id}")
        return True
