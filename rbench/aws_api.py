"""Direct API client for AWS EC2 operations.

This module wraps the boto3 EC2 and IAM clients with the handful of calls the
remote benchmark needs: identifying the caller, managing the key pair, and
launching, waiting for and terminating a single instance.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from .logger import logger
from .models import InstanceArch

if TYPE_CHECKING:
    from pathlib import Path

DUPLICATE_KEY_PAIR = "InvalidKeyPair.Duplicate"


class AWSAPIError(Exception):
    """Custom exception for AWS API errors that should be reported without a traceback."""

    def __init__(self, message: str, error_type: str = "unknown") -> None:
        """Initialise AWSAPIError with message and error type.

        Args:
            message: The user-friendly error message.
            error_type: The type of error for categorisation.
        """
        super().__init__(message)
        self.error_type = error_type


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", "unknown"))


class EC2Direct:
    """Direct API implementation for the EC2 operations used by rbench."""

    def __init__(self, region: str, session: boto3.session.Session | None = None) -> None:
        """Initialise EC2 and IAM clients for ``region``.

        Raises:
            AWSAPIError: If the AWS SDK cannot be configured.
        """
        self.region = region
        try:
            self.session = session or boto3.session.Session(region_name=region)
            self.ec2 = self.session.client("ec2", region_name=region)
            self.iam = self.session.client("iam")
        except BotoCoreError as e:
            msg = f"unable to load SDK config, {e}"
            raise AWSAPIError(msg, "config") from e

    def get_user_name(self) -> str:
        """Get the IAM user name of the caller.

        Returns:
            The IAM user name.

        Raises:
            AWSAPIError: If the user cannot be retrieved.
        """
        logger.debug("[API] iam:GetUser - Resolving caller identity")
        try:
            result = self.iam.get_user()
        except (ClientError, BotoCoreError) as e:
            msg = f"unable to get user, {e}"
            raise AWSAPIError(msg, "iam") from e
        return str(result["User"]["UserName"])

    def ensure_key_pair(self, key_name: str, key_path: Path) -> bool:
        """Create the key pair and save its private key, tolerating an existing one.

        Returns:
            True if a new key pair was created, False if it already existed.

        Raises:
            AWSAPIError: If creation fails for any reason other than a duplicate.
        """
        logger.debug("[API] ec2:CreateKeyPair - Creating key pair %s", key_name)
        try:
            result = self.ec2.create_key_pair(KeyName=key_name)
        except ClientError as e:
            if _error_code(e) != DUPLICATE_KEY_PAIR:
                msg = f"unable to create key pair {key_name}, {e}"
                raise AWSAPIError(msg, "key_pair") from e
            logger.debug("Key pair %s already exists", key_name)
            if not key_path.exists():
                logger.warning(
                    "⚠️  Key pair %s exists but %s is missing; SSH will fail. "
                    "Delete the key pair in EC2 to recreate it.",
                    key_name,
                    key_path,
                )
            return False
        except BotoCoreError as e:
            msg = f"unable to create key pair {key_name}, {e}"
            raise AWSAPIError(msg, "key_pair") from e

        try:
            key_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            key_path.touch(mode=0o600, exist_ok=True)
            key_path.chmod(0o600)
            key_path.write_text(result["KeyMaterial"])
        except OSError as e:
            msg = f"unable to write private key to file, {e}"
            raise AWSAPIError(msg, "key_pair") from e

        logger.info("🔑 Created key pair %s (%s)", key_name, key_path)
        return True

    def get_instance_arch(self, instance_type: str) -> InstanceArch:
        """Look up the processor architecture of an instance type.

        Returns:
            ARM64 for Graviton types, X86_64 otherwise.

        Raises:
            AWSAPIError: If the instance type cannot be described.
        """
        logger.debug("[API] ec2:DescribeInstanceTypes - Describing %s", instance_type)
        try:
            result = self.ec2.describe_instance_types(InstanceTypes=[instance_type])
        except (ClientError, BotoCoreError) as e:
            msg = f"unable to describe instance types, {e}"
            raise AWSAPIError(msg, "instance_type") from e

        instance_types = result.get("InstanceTypes", [])
        if not instance_types:
            msg = f"unknown instance type {instance_type}"
            raise AWSAPIError(msg, "instance_type")

        architectures = instance_types[0].get("ProcessorInfo", {}).get("SupportedArchitectures", [])
        if architectures and architectures[0] == "arm64":
            return InstanceArch.ARM64
        return InstanceArch.X86_64

    def run_instance(
        self,
        image_id: str,
        instance_type: str,
        key_name: str,
        security_group_ids: list[str],
        tags: dict[str, str],
    ) -> str:
        """Launch exactly one instance.

        Returns:
            The new instance ID.

        Raises:
            AWSAPIError: If the launch fails or does not yield one instance.
        """
        params: dict[str, Any] = {
            "ImageId": image_id,
            "InstanceType": instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "KeyName": key_name,
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [{"Key": key, "Value": value} for key, value in tags.items()],
                }
            ],
        }
        if security_group_ids:
            params["SecurityGroupIds"] = security_group_ids

        logger.debug("[API] ec2:RunInstances - Launching %s from %s", instance_type, image_id)
        try:
            result = self.ec2.run_instances(**params)
        except (ClientError, BotoCoreError) as e:
            msg = f"unable to run instance, {e}"
            raise AWSAPIError(msg, "run_instances") from e

        instances = result.get("Instances", [])
        if len(instances) != 1:
            msg = f"expected 1 instance, got {len(instances)}"
            raise AWSAPIError(msg, "run_instances")
        return str(instances[0]["InstanceId"])

    def wait_until_running(self, instance_id: str, timeout: int = 120, delay: int = 5) -> str:
        """Block until the instance reports ``running``.

        Returns:
            The instance's public IP address.

        Raises:
            AWSAPIError: If the waiter fails or the instance has no public IP.
        """
        logger.debug("[API] ec2:DescribeInstances - Waiting for %s to run", instance_id)
        waiter = self.ec2.get_waiter("instance_running")
        try:
            waiter.wait(
                InstanceIds=[instance_id],
                WaiterConfig={"Delay": delay, "MaxAttempts": max(1, timeout // delay)},
            )
            result = self.ec2.describe_instances(InstanceIds=[instance_id])
        except (WaiterError, ClientError, BotoCoreError) as e:
            msg = f"error waiting for instance to be running, {e}"
            raise AWSAPIError(msg, "wait") from e

        instance = result["Reservations"][0]["Instances"][0]
        public_ip = instance.get("PublicIpAddress")
        if not public_ip:
            msg = f"instance {instance_id} has no public IP address"
            raise AWSAPIError(msg, "wait")
        return str(public_ip)

    def terminate_instance(self, instance_id: str) -> bool:
        """Terminate an instance.

        Returns:
            True if the termination request was accepted, False otherwise.
        """
        logger.debug("[API] ec2:TerminateInstances - Terminating %s", instance_id)
        try:
            self.ec2.terminate_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            logger.error("unable to terminate instance %s, %s", instance_id, e)
            return False
        return True
