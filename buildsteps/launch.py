#
# launch.py - Pieces shared by the on-demand and spot launch steps.
#
# Both launch steps publish the same keys so later steps do not care how the
# instance was obtained:
#
#   instance_id, instance, instance_ip, generated_data
#
import logging
from typing import List, Optional

import backoff
from botocore.exceptions import ClientError

from buildObjects import RunContext, StateBag
from awscommon import polling
from awscommon.template import ec2Tags, renderTags
from buildsteps.sourceAmiInfo import publishGeneratedData

log = logging.getLogger(__name__)


def readUserData(userData: str, userDataFile: str) -> str:
    if userDataFile:
        with open(userDataFile, "r") as f:
            return f.read()
    return userData


def generatedData(state: StateBag) -> dict:
    return publishGeneratedData(state, state.get("source_image") or {})


def tagSpecifications(state: StateBag, runTags, volumeTags) -> List[dict]:
    data = generatedData(state)
    specs = []
    if runTags:
        specs.append({"ResourceType": "instance", "Tags": ec2Tags(renderTags(runTags, data))})
    if volumeTags:
        specs.append({"ResourceType": "volume", "Tags": ec2Tags(renderTags(volumeTags, data))})
    return specs


def networkParams(state: StateBag, associatePublicIpAddress: Optional[bool]) -> dict:
    """networkParams - Subnet and security groups, as a network interface when
    the public IP association has to be controlled explicitly.
    """
    subnetId = state.get("subnet_id", "")
    groupIds = state.get("security_group_ids", [])
    if associatePublicIpAddress is not None:
        interface = {
            "DeviceIndex": 0,
            "AssociatePublicIpAddress": associatePublicIpAddress,
            "Groups": list(groupIds),
            "DeleteOnTermination": True,
        }
        if subnetId:
            interface["SubnetId"] = subnetId
        return {"NetworkInterfaces": [interface]}
    params: dict = {"SecurityGroupIds": list(groupIds)}
    if subnetId:
        params["SubnetId"] = subnetId
    return params


def instanceAddress(instance: dict, sshInterface: str) -> str:
    if sshInterface == "public_ip":
        return instance.get("PublicIpAddress", "")
    if sshInterface == "private_ip":
        return instance.get("PrivateIpAddress", "")
    if sshInterface == "public_dns":
        return instance.get("PublicDnsName", "")
    if sshInterface == "private_dns":
        return instance.get("PrivateDnsName", "")
    # Default: prefer whatever is reachable from outside the VPC
    for key in ("PublicIpAddress", "PublicDnsName", "PrivateIpAddress"):
        if instance.get(key):
            return instance[key]
    return ""


def publishInstance(state: StateBag, instance: dict, sshInterface: str) -> None:
    state.put("instance", instance)
    state.put("instance_id", instance["InstanceId"])
    state.put("instance_ip", instanceAddress(instance, sshInterface))
    generatedData(state)


@backoff.on_exception(backoff.expo, ClientError, max_tries=3, jitter=None)
def describeInstance(ec2, instanceId) -> dict:
    resp = ec2.describe_instances(InstanceIds=[instanceId])
    return resp["Reservations"][0]["Instances"][0]


def terminateInstance(ec2, instanceId, pollingConfig, ui=None) -> None:
    """terminateInstance - Terminate and wait. Used from cleanups, so it waits
    on a fresh context: a cancelled build must still finish its teardown.
    """
    if ui is not None:
        ui.say("Terminating the source AWS instance...")
    ec2.terminate_instances(InstanceIds=[instanceId])
    polling.waitUntilInstanceTerminated(RunContext(), ec2, instanceId, pollingConfig)
