import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

import boto3
import boto3.session

from slash_infra.utils.config import MOCK_AWS
from slash_infra.utils.error_reporting import report_exception
from slash_infra.utils.logger import logger

# This is 17 characters plus the "i-" prefix
EXACT_EC2_INSTANCE_ID_LENGTH = 19

ENV_PREFIX_AWS_ROLE   = "AWS_ROLE_"
ENV_PREFIX_AWS_REGION = "AWS_REGION_"
DEFAULT_REGION        = "us-east-1"

EC2_INSTANCE_KIND = "ec2.instance"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class Result:
    kind: str
    metadata: dict[str, list[str]] = field(default_factory=dict)
    links: dict[str, str] = field(default_factory=dict)

    def get_metadata(self, key: str) -> str:
        return ", ".join(self.metadata.get(key, []))

    def get_link(self, key: str) -> str:
        return self.links.get(key, "")


@dataclass
class ResultSet:
    """Results of the same kind, usually from one account."""

    kind: str
    results: list[Result] = field(default_factory=list)
    search_link: str = ""


class Resolver(Protocol):
    async def search(self, ctx: Any, query: str) -> list[ResultSet]:
        ...


# ---------------------------------------------------------------------------
# AWS accounts
# ---------------------------------------------------------------------------

class EC2AccountClient:
    """
    Looks up instances in one AWS account/region by assuming `role_arn`.

    The base credentials (AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY) only
    need permission to assume the configured roles. A fresh role session is
    taken per lookup, so expiring STS credentials never need refreshing.
    """

    def __init__(self, alias: str, role_arn: str, region: str = DEFAULT_REGION) -> None:
        self.alias = alias
        self.role_arn = role_arn
        self.region = region

    def describe_instance(self, instance_id: str) -> list[dict]:
        # Lookups run in worker threads; boto3.client() shares the default session
        session = boto3.session.Session()
        creds = session.client("sts").assume_role(
            RoleArn=self.role_arn,
            RoleSessionName="slash-infra",
        )["Credentials"]

        ec2 = session.client(
            "ec2",
            region_name=self.region,
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
        )
        output = ec2.describe_instances(
            Filters=[{"Name": "instance-id", "Values": [instance_id]}]
        )
        return [
            instance
            for reservation in output.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]


class MockEC2AccountClient:
    """Canned account used when MOCK_AWS=true."""

    def __init__(self, alias: str = "mock", region: str = DEFAULT_REGION) -> None:
        self.alias = alias
        self.region = region

    def describe_instance(self, instance_id: str) -> list[dict]:
        return [{
            "InstanceId": instance_id,
            "ImageId": "ami-0123456789abcdef0",
            "InstanceType": "t3.micro",
            "State": {"Name": "running"},
            "Placement": {"AvailabilityZone": f"{self.region}a"},
            "NetworkInterfaces": [{
                "Association": {"PublicIp": "203.0.113.10"},
                "PrivateIpAddresses": [{"PrivateIpAddress": "10.0.0.10"}],
            }],
            "Tags": [
                {"Key": "Environment", "Value": "mock"},
                {"Key": "Role", "Value": "web"},
            ],
        }]


def build_account_clients_from_environment(
    environ: Optional[Mapping[str, str]] = None,
) -> list[EC2AccountClient]:
    """
    One client per AWS account to discover resources in.

    `AWS_ROLE_{alias}`   — the role to assume in the account known as {alias}
    `AWS_REGION_{alias}` — the account's region, if not us-east-1

    An account that spans several regions is configured several times under
    different aliases, e.g. AWS_ROLE_DEV_US_EAST=... and AWS_ROLE_DEV_EU=...
    """
    environ = os.environ if environ is None else environ
    clients = []

    for key, role_arn in sorted(environ.items()):
        if not key.startswith(ENV_PREFIX_AWS_ROLE) or not role_arn:
            continue

        alias = key[len(ENV_PREFIX_AWS_ROLE):]
        region = environ.get(f"{ENV_PREFIX_AWS_REGION}{alias}") or DEFAULT_REGION
        clients.append(EC2AccountClient(alias.lower(), role_arn, region))

    return clients


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class EC2Resolver:
    def __init__(self, clients: list) -> None:
        self.clients = clients

    @classmethod
    def from_env(cls) -> "EC2Resolver":
        if MOCK_AWS:
            logger.info("MOCK_AWS enabled, EC2 lookups return canned data")
            return cls([MockEC2AccountClient()])

        clients = build_account_clients_from_environment()
        logger.info(f"EC2 resolver configured | accounts={[c.alias for c in clients]}")
        return cls(clients)

    async def search(self, ctx: Any, query: str) -> list[ResultSet]:
        """
        Searches every account concurrently.

        A failing account is logged and left out; the others still count.
        """
        query = query.strip()
        if not is_ec2_instance_id(query):
            return []

        outcomes = await asyncio.gather(
            *(asyncio.to_thread(self._find_instances, client, query) for client in self.clients),
            return_exceptions=True,
        )

        result_sets = []
        for client, outcome in zip(self.clients, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"EC2 lookup failed | account={client.alias} error={outcome}")
                report_exception(outcome, account=client.alias, query=query)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            result_sets.append(outcome)

        return result_sets

    @staticmethod
    def _find_instances(client, instance_id: str) -> ResultSet:
        instances = client.describe_instance(instance_id)
        return ResultSet(
            kind=EC2_INSTANCE_KIND,
            results=[instance_to_result(instance, client.region) for instance in instances],
            search_link=ec2_console_link(client.region, instance_id),
        )


def is_ec2_instance_id(query: str) -> bool:
    # The EC2 API does not allow substring searches
    return query.startswith("i-") and len(query) == EXACT_EC2_INSTANCE_ID_LENGTH


def instance_to_result(instance: dict, region: str) -> Result:
    public_ips, private_ips = [], []

    # Stopped instances have no network interfaces
    for interface in instance.get("NetworkInterfaces") or []:
        association = interface.get("Association") or {}
        if association.get("PublicIp"):
            public_ips.append(association["PublicIp"])
        for private in interface.get("PrivateIpAddresses") or []:
            private_ips.append(private["PrivateIpAddress"])

    instance_id = instance["InstanceId"]
    result = Result(
        kind=EC2_INSTANCE_KIND,
        metadata={
            "instance_id":    [instance_id],
            "ami_id":         [instance.get("ImageId", "")],
            "instance_type":  [instance.get("InstanceType", "")],
            "instance_state": [instance.get("State", {}).get("Name", "")],
            "az":             [instance.get("Placement", {}).get("AvailabilityZone", "")],
            "public_ips":     public_ips,
            "private_ips":    private_ips,
        },
        links={
            "ec2_console":     ec2_console_link(region, instance_id),
            "config_timeline": ec2_config_timeline_link(region, instance_id),
        },
    )

    for tag in instance.get("Tags") or []:
        result.metadata[f"tag:{tag['Key']}"] = [tag["Value"]]

    return result


def ec2_console_link(region: str, search: str) -> str:
    return (
        f"https://console.aws.amazon.com/ec2/v2/home?region={region}"
        f"#Instances:search={search};sort=desc:launchTime"
    )


def ec2_config_timeline_link(region: str, instance_id: str) -> str:
    return (
        f"https://console.aws.amazon.com/config/home?region={region}"
        f"#/timeline/AWS::EC2::Instance/{instance_id}/configuration"
    )
