#
# runSourceInstance.py - Launch the on-demand build instance.
#
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon import polling
from awscommon.blockDevices import BlockDevice, ec2Mappings
from awscommon.polling import PollingConfig
from awscommon.runConfig import MetadataOptions
from buildsteps import launch
from buildsteps.interface import Action, halt


@dataclass
class StepRunSourceInstance(object):
    instanceType: str
    pollingConfig: PollingConfig
    launchMappings: List[BlockDevice] = field(default_factory=list)
    associatePublicIpAddress: Optional[bool] = None
    ebsOptimized: bool = False
    instanceInitiatedShutdownBehavior: str = ""
    metadata: MetadataOptions = field(default_factory=MetadataOptions)
    tenancy: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    volumeTags: Dict[str, str] = field(default_factory=dict)
    userData: str = ""
    userDataFile: str = ""
    sshInterface: str = ""

    instanceId: str = field(default="", init=False)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        sourceImage = state.getExn("source_image", dict)
        log = logging.getLogger("StepRunSourceInstance")

        try:
            userData = launch.readUserData(self.userData, self.userDataFile)
        except OSError as e:
            return halt(state, RuntimeError("Problem reading user data file: %s" % e))

        params = {
            "ImageId": sourceImage["ImageId"],
            "InstanceType": self.instanceType,
            "MinCount": 1,
            "MaxCount": 1,
            "EbsOptimized": self.ebsOptimized,
            "MetadataOptions": self.metadata.ec2Options(),
        }
        params.update(launch.networkParams(state, self.associatePublicIpAddress))
        if state.get("key_pair_name"):
            params["KeyName"] = state.get("key_pair_name")
        if userData:
            params["UserData"] = userData
        if self.launchMappings:
            params["BlockDeviceMappings"] = ec2Mappings(self.launchMappings)
        if state.get("iam_instance_profile"):
            params["IamInstanceProfile"] = {"Name": state.get("iam_instance_profile")}
        if self.instanceInitiatedShutdownBehavior:
            params["InstanceInitiatedShutdownBehavior"] = self.instanceInitiatedShutdownBehavior

        placement = {}
        if state.get("availability_zone") and "NetworkInterfaces" not in params:
            placement["AvailabilityZone"] = state.get("availability_zone")
        if self.tenancy:
            placement["Tenancy"] = self.tenancy
        if placement:
            params["Placement"] = placement

        specs = launch.tagSpecifications(state, self.tags, self.volumeTags)
        if specs:
            params["TagSpecifications"] = specs

        ui.say("Launching a source AWS instance...")
        try:
            resp = ec2.run_instances(**params)
        except Exception as e:
            return halt(state, RuntimeError("Error launching source instance: %s" % e))

        # Register the instance before waiting so cleanup can always reach it
        self.instanceId = resp["Instances"][0]["InstanceId"]
        state.put("instance_id", self.instanceId)
        ui.message("Instance ID: %s" % self.instanceId)

        ui.say("Waiting for instance (%s) to become ready..." % self.instanceId)
        try:
            instance = polling.waitUntilInstanceRunning(
                ctx, ec2, self.instanceId, self.pollingConfig
            )
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError(
                "Error waiting for instance (%s) to become ready: %s" % (self.instanceId, e)
            ))

        launch.publishInstance(state, instance, self.sshInterface)
        log.info(
            "Instance %s | Public IP %s | Private IP %s"
            % (self.instanceId, instance.get("PublicIpAddress"), instance.get("PrivateIpAddress"))
        )
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not self.instanceId:
            return
        launch.terminateInstance(
            state.getExn("ec2"), self.instanceId, self.pollingConfig, state.get("ui")
        )
