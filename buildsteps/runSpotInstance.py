#
# runSpotInstance.py - Launch the build instance from a one-time spot request.
#
# The spot request and the instance that fulfils it are separate resources.
# Cleanup cancels the request first, so a request that was never fulfilled
# cannot start an instance after the build is gone, then terminates the
# instance if one was attached.
#
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon import polling
from awscommon.blockDevices import BlockDevice, ec2Mappings
from awscommon.polling import PollingConfig
from awscommon.retry import Backoff, RetryConfig
from awscommon.template import ec2Tags, renderTags
from buildsteps import launch
from buildsteps.interface import Action, halt


@dataclass
class StepRunSpotInstance(object):
    pollingConfig: PollingConfig
    spotPrice: str
    instanceType: str = ""
    spotInstanceTypes: List[str] = field(default_factory=list)
    launchMappings: List[BlockDevice] = field(default_factory=list)
    associatePublicIpAddress: Optional[bool] = None
    ebsOptimized: bool = False
    tags: Dict[str, str] = field(default_factory=dict)
    spotTags: Dict[str, str] = field(default_factory=dict)
    volumeTags: Dict[str, str] = field(default_factory=dict)
    userData: str = ""
    userDataFile: str = ""
    sshInterface: str = ""

    spotRequestId: str = field(default="", init=False)
    instanceId: str = field(default="", init=False)

    def launchSpecification(self, state: StateBag, userData: str) -> dict:
        sourceImage = state.getExn("source_image", dict)
        spec = {
            "ImageId": sourceImage["ImageId"],
            "InstanceType": self.instanceType or self.spotInstanceTypes[0],
            "EbsOptimized": self.ebsOptimized,
        }
        network = launch.networkParams(state, self.associatePublicIpAddress)
        if "SecurityGroupIds" in network:
            spec["SecurityGroupIds"] = network["SecurityGroupIds"]
            if "SubnetId" in network:
                spec["SubnetId"] = network["SubnetId"]
        else:
            spec.update(network)
        if state.get("key_pair_name"):
            spec["KeyName"] = state.get("key_pair_name")
        if userData:
            spec["UserData"] = userData
        if self.launchMappings:
            spec["BlockDeviceMappings"] = ec2Mappings(self.launchMappings)
        if state.get("iam_instance_profile"):
            spec["IamInstanceProfile"] = {"Name": state.get("iam_instance_profile")}
        if state.get("availability_zone") and "NetworkInterfaces" not in spec:
            spec["Placement"] = {"AvailabilityZone": state.get("availability_zone")}
        return spec

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        data = launch.generatedData(state)

        try:
            userData = launch.readUserData(self.userData, self.userDataFile)
        except OSError as e:
            return halt(state, RuntimeError("Problem reading user data file: %s" % e))

        params = {
            "InstanceCount": 1,
            "Type": "one-time",
            "LaunchSpecification": self.launchSpecification(state, userData),
        }
        # Without a price AWS caps the request at the on-demand price
        if self.spotPrice != "auto":
            params["SpotPrice"] = self.spotPrice
        if self.spotTags:
            params["TagSpecifications"] = [{
                "ResourceType": "spot-instances-request",
                "Tags": ec2Tags(renderTags(self.spotTags, data)),
            }]

        ui.say("Requesting spot instance '%s'..." % params["LaunchSpecification"]["InstanceType"])
        try:
            resp = ec2.request_spot_instances(**params)
        except Exception as e:
            return halt(state, RuntimeError("Error requesting spot instance: %s" % e))

        self.spotRequestId = resp["SpotInstanceRequests"][0]["SpotInstanceRequestId"]
        state.put("spot_request_id", self.spotRequestId)
        ui.message("Spot request ID: %s" % self.spotRequestId)

        try:
            request = polling.waitUntilSpotRequestFulfilled(
                ctx, ec2, self.spotRequestId, self.pollingConfig
            )
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError(
                "Error waiting for spot request (%s) to be fulfilled: %s" % (self.spotRequestId, e)
            ))

        self.instanceId = request["InstanceId"]
        state.put("instance_id", self.instanceId)
        ui.message("Instance ID: %s" % self.instanceId)

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

        instanceTags = renderTags(self.tags, data)
        volumeTags = renderTags(self.volumeTags, data)
        try:
            self.tagInstance(ctx, ec2, instance, instanceTags, volumeTags)
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError("Error tagging spot instance: %s" % e))

        launch.publishInstance(state, instance, self.sshInterface)
        return Action.CONTINUE

    def tagInstance(self, ctx, ec2, instance, instanceTags, volumeTags):
        """Spot launch specifications cannot carry tag specifications, so the
        instance and its volumes are tagged once they exist.
        """
        retry = RetryConfig(tries=11, retryDelay=Backoff(0.2, 30, 2))
        if instanceTags:
            retry.run(
                ctx,
                lambda _: ec2.create_tags(Resources=[self.instanceId], Tags=ec2Tags(instanceTags)),
                "tag instance %s" % self.instanceId,
            )
        volumeIds = [
            m["Ebs"]["VolumeId"]
            for m in instance.get("BlockDeviceMappings", [])
            if m.get("Ebs", {}).get("VolumeId")
        ]
        if volumeTags and volumeIds:
            retry.run(
                ctx,
                lambda _: ec2.create_tags(Resources=volumeIds, Tags=ec2Tags(volumeTags)),
                "tag volumes of %s" % self.instanceId,
            )

    def cleanup(self, state: StateBag) -> None:
        ec2 = state.getExn("ec2")
        ui = state.get("ui")
        if self.spotRequestId:
            if ui is not None:
                ui.say("Cancelling the spot request...")
            ec2.cancel_spot_instance_requests(SpotInstanceRequestIds=[self.spotRequestId])
            if not self.instanceId:
                # A request can be fulfilled between the last poll and the cancel
                resp = ec2.describe_spot_instance_requests(
                    SpotInstanceRequestIds=[self.spotRequestId]
                )
                requests = resp.get("SpotInstanceRequests", [])
                if requests and requests[0].get("InstanceId"):
                    self.instanceId = requests[0]["InstanceId"]
        if self.instanceId:
            launch.terminateInstance(ec2, self.instanceId, self.pollingConfig, ui)
