"""
Shared EFS volume mounted by RWS functions.

The volume holds the dependency modules shared by all functions. Creating it
is a multi-step convergence over an eventually-consistent API:

    file system -> mount target -> access point -> S3 gateway endpoint

Each step waits until the resource reports `available` before the next one
starts. The creation token derived from the volume name makes repeated calls
reuse the same file system instead of creating a duplicate.
"""

import uuid
from typing import List, Optional

from botocore.exceptions import ClientError

from rws_lambda.clients import ClientRegistry
from rws_lambda.exceptions import ResourceInconsistency, classify_client_error, error_code
from rws_lambda.utils import LoggingBase
from rws_lambda.vpc import NetworkProvisioner
from rws_lambda.waiter import Waiter

EFS_NAME = "RWS_EFS"
AVAILABLE = "available"

POSIX_UID = 1001
POSIX_GID = 1001
ROOT_PATH = "/"
ROOT_PERMISSIONS = "755"


class AccessPoint:
    def __init__(self, access_point_id: str, arn: str, lifecycle_state: str):
        self.id = access_point_id
        self.arn = arn
        self.lifecycle_state = lifecycle_state

    @staticmethod
    def deserialize(dct: dict) -> "AccessPoint":
        return AccessPoint(dct["AccessPointId"], dct["AccessPointArn"], dct.get("LifeCycleState", ""))

    def serialize(self) -> dict:
        return {"id": self.id, "arn": self.arn, "lifecycle_state": self.lifecycle_state}


class FileSystemRecord:
    """State of the shared volume once `get_or_create` returns."""

    def __init__(
        self,
        file_system_id: str,
        lifecycle_state: str,
        mount_target_ids: List[str],
        access_point: AccessPoint,
        already_existed: bool,
    ):
        self.file_system_id = file_system_id
        self.lifecycle_state = lifecycle_state
        self.mount_target_ids = mount_target_ids
        self.access_point = access_point
        self.already_existed = already_existed

    def serialize(self) -> dict:
        return {
            "file_system_id": self.file_system_id,
            "lifecycle_state": self.lifecycle_state,
            "mount_target_ids": self.mount_target_ids,
            "access_point": self.access_point.serialize(),
            "already_existed": self.already_existed,
        }


class FileSystemProvisioner(LoggingBase):
    """Finds or creates the shared file system with its mount target and access point."""

    def __init__(self, clients: ClientRegistry, network: NetworkProvisioner, waiter: Waiter):
        super().__init__()
        self._clients = clients
        self._network = network
        self._waiter = waiter

    @staticmethod
    def typename() -> str:
        return "AWS.EFS"

    @property
    def efs(self):
        return self._clients.get_efs_client()

    def find_file_system(self, creation_token: str) -> Optional[dict]:
        response = self.efs.describe_file_systems(CreationToken=creation_token)
        file_systems = response.get("FileSystems", [])
        return file_systems[0] if file_systems else None

    def get_access_points(self, file_system_id: str) -> List[dict]:
        response = self.efs.describe_access_points(FileSystemId=file_system_id)
        access_points = response.get("AccessPoints", [])
        if not access_points:
            self.logging.info(f"No access points found for EFS {file_system_id}.")
        return access_points

    def get_mount_targets(self, file_system_id: str) -> List[dict]:
        return self.efs.describe_mount_targets(FileSystemId=file_system_id).get("MountTargets", [])

    def get_or_create(self, name: str, vpc_id: str, subnet_id: str) -> FileSystemRecord:
        """
        Return the shared file system named `name`, creating it when missing.

        Never returns before the file system, a mount target and the access
        point all report `available`.

        Raises:
            ResourceInconsistency: the file system exists without a usable access point
            ProviderError: a cloud API call failed
            WaitTimeout: a resource did not become available in time
        """
        try:
            existing = self.find_file_system(name)
        except ClientError as e:
            self.logging.error(f"Error looking up EFS {name}: {e}")
            raise classify_client_error(e, "DescribeFileSystems") from e

        if existing is not None:
            return self._existing_record(existing)

        try:
            return self._create(name, vpc_id, subnet_id)
        except ClientError as e:
            self.logging.error(f"Error creating EFS {name}: {e}")
            raise classify_client_error(e, f"creating EFS {name}") from e

    def _existing_record(self, file_system: dict) -> FileSystemRecord:
        file_system_id = file_system["FileSystemId"]
        try:
            access_points = self.get_access_points(file_system_id)
        except ClientError as e:
            raise classify_client_error(e, f"describing EFS {file_system_id}") from e

        available = [ap for ap in access_points if ap.get("LifeCycleState") == AVAILABLE]
        if not available:
            self.logging.error(f"EFS {file_system_id} has no available access point.")
            raise ResourceInconsistency(
                f"No available access point in EFS {file_system_id} for RWS lambdas"
            )
        access_point = AccessPoint.deserialize(available[0])

        file_system = self.wait_for_file_system(file_system_id)
        mount_targets = self.wait_for_mount_target(file_system_id, require_existing=True)

        self.logging.info(f"EFS exists: {file_system_id}, access point {access_point.arn}")
        return FileSystemRecord(
            file_system_id,
            file_system.get("LifeCycleState", AVAILABLE),
            [mt["MountTargetId"] for mt in mount_targets],
            access_point,
            True,
        )

    def _create(self, name: str, vpc_id: str, subnet_id: str) -> FileSystemRecord:
        try:
            response = self.efs.create_file_system(
                CreationToken=name,
                PerformanceMode="generalPurpose",
                Tags=[{"Key": "Name", "Value": name}],
            )
        except ClientError as e:
            if error_code(e) != "FileSystemAlreadyExists":
                raise
            # Another process won the race on the same creation token.
            self.logging.warning(f"EFS {name} is being created concurrently, adopting it.")
            return self._adopt(name)

        file_system_id = response["FileSystemId"]
        self.logging.info(f"EFS {file_system_id} created, waiting for it to become available")

        file_system = self.wait_for_file_system(file_system_id)
        self.create_mount_target(file_system_id, subnet_id)
        mount_targets = self.wait_for_mount_target(file_system_id)
        access_point_id, _ = self.create_access_point(file_system_id)
        access_point = self.wait_for_access_point(access_point_id)

        endpoint_id = self._network.create_vpc_endpoint_if_not_exist(vpc_id)
        self._network.ensure_route_to_vpc_endpoint(vpc_id, endpoint_id)

        self.logging.info(f"EFS {file_system_id} is ready with access point {access_point.arn}")
        return FileSystemRecord(
            file_system_id,
            file_system.get("LifeCycleState", AVAILABLE),
            [mt["MountTargetId"] for mt in mount_targets],
            access_point,
            False,
        )

    def _adopt(self, name: str) -> FileSystemRecord:
        def probe():
            file_system = self.find_file_system(name)
            if file_system is None or file_system.get("LifeCycleState") != AVAILABLE:
                return None
            access_points = self.get_access_points(file_system["FileSystemId"])
            if not any(ap.get("LifeCycleState") == AVAILABLE for ap in access_points):
                return None
            return file_system

        file_system = self._waiter.wait(f"concurrently created EFS {name}", probe)
        return self._existing_record(file_system)

    def wait_for_file_system(self, file_system_id: str) -> dict:
        def probe():
            response = self.efs.describe_file_systems(FileSystemId=file_system_id)
            file_systems = response.get("FileSystems", [])
            if file_systems and file_systems[0].get("LifeCycleState") == AVAILABLE:
                return file_systems[0]
            return None

        return self._waiter.wait(f"EFS {file_system_id}", probe)

    def create_mount_target(self, file_system_id: str, subnet_id: str) -> str:
        response = self.efs.create_mount_target(FileSystemId=file_system_id, SubnetId=subnet_id)
        self.logging.info(f"EFS Mount Target {response['MountTargetId']} created in {subnet_id}")
        return response["MountTargetId"]

    def wait_for_mount_target(self, file_system_id: str, require_existing: bool = False) -> List[dict]:
        """
        Wait until a mount target of the file system is available.

        Returns:
            the available mount targets

        Raises:
            ResourceInconsistency: `require_existing` is set and the file system has no mount target
        """

        def probe():
            mount_targets = self.get_mount_targets(file_system_id)
            if require_existing and not mount_targets:
                self.logging.error(f"EFS {file_system_id} has no mount target.")
                raise ResourceInconsistency(
                    f"No mount target in EFS {file_system_id} for RWS lambdas"
                )
            available = [mt for mt in mount_targets if mt.get("LifeCycleState") == AVAILABLE]
            return available or None

        return self._waiter.wait(f"mount target of EFS {file_system_id}", probe)

    @staticmethod
    def generate_client_token() -> str:
        return uuid.uuid4().hex

    def create_access_point(self, file_system_id: str):
        response = self.efs.create_access_point(
            FileSystemId=file_system_id,
            ClientToken=self.generate_client_token(),
            PosixUser={"Uid": POSIX_UID, "Gid": POSIX_GID},
            RootDirectory={
                "Path": ROOT_PATH,
                "CreationInfo": {
                    "OwnerUid": POSIX_UID,
                    "OwnerGid": POSIX_GID,
                    "Permissions": ROOT_PERMISSIONS,
                },
            },
        )
        self.logging.info(f"EFS access point {response['AccessPointId']} created")
        return response["AccessPointId"], response["AccessPointArn"]

    def wait_for_access_point(self, access_point_id: str) -> AccessPoint:
        def probe():
            response = self.efs.describe_access_points(AccessPointId=access_point_id)
            access_points = response.get("AccessPoints", [])
            if access_points and access_points[0].get("LifeCycleState") == AVAILABLE:
                return AccessPoint.deserialize(access_points[0])
            return None

        return self._waiter.wait(f"EFS access point {access_point_id}", probe)

    def delete(self, file_system_id: str) -> None:
        """Delete the file system after removing its access points and mount targets."""
        try:
            for access_point in self.get_access_points(file_system_id):
                self.efs.delete_access_point(AccessPointId=access_point["AccessPointId"])
                self.logging.info(f"Deleted EFS access point {access_point['AccessPointId']}")
            for mount_target in self.get_mount_targets(file_system_id):
                self.efs.delete_mount_target(MountTargetId=mount_target["MountTargetId"])
                self.logging.info(f"Deleted EFS mount target {mount_target['MountTargetId']}")

            self._waiter.wait(
                f"removal of mount targets of EFS {file_system_id}",
                lambda: len(self.get_mount_targets(file_system_id)) == 0,
            )
            self.efs.delete_file_system(FileSystemId=file_system_id)
        except ClientError as e:
            self.logging.error(f"Error while deleting EFS {file_system_id}: {e}")
            raise classify_client_error(e, f"deleting EFS {file_system_id}") from e
        self.logging.warning(f"EFS with ID {file_system_id} has been deleted.")
