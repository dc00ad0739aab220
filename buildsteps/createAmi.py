#
# createAmi.py - Capture the build instance as an AMI.
#
# StepCreateAmi images the whole instance with CreateImage. StepRegisterAmi
# snapshots a single device and registers an AMI with it as the root volume.
#
# Both publish amis (region => AMI id) and snapshots (region => snapshot ids).
# Once created, an AMI is part of the build output: a later failure reports it
# but does not remove it.
#
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from config import Config
from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon import polling
from awscommon.artifact import imageSnapshotIds
from awscommon.blockDevices import BlockDevice, RootBlockDevice, ec2Mappings
from awscommon.polling import PollingConfig
from buildsteps.ebsVolumes import attachedVolumes
from buildsteps.interface import Action, halt


def intermediaryName() -> str:
    return "%s-intermediary-%s" % (Config.PREFIX, uuid.uuid4().hex)


def buildRegionName(amiName, skipBuildRegion, encryptBootVolume) -> str:
    """buildRegionName - Name of the first image. StepCopyAmi replaces it when
    the build region is skipped or re-encrypted, and two images in a region
    cannot share a name.
    """
    if skipBuildRegion or encryptBootVolume is True:
        return intermediaryName()
    return amiName


def publishImage(state: StateBag, region: str, image: dict) -> None:
    state.put("amis", {region: image["ImageId"]})
    state.put("snapshots", {region: imageSnapshotIds(image)})
    state.put("ami", image)


def logKeptImages(state: StateBag, log) -> None:
    if "error" not in state and not state.get("cancelled"):
        return
    for region, imageId in sorted((state.get("amis") or {}).items()):
        log.warning(
            "Build did not finish, AMI %s in %s was kept and must be removed manually"
            % (imageId, region)
        )


@dataclass
class StepCreateAmi(object):
    amiName: str
    pollingConfig: PollingConfig
    amiMappings: List[BlockDevice] = field(default_factory=list)
    skipBuildRegion: bool = False
    encryptBootVolume: Optional[bool] = None
    # Tags applied to the image and snapshots by CreateImage itself
    tagSpecifications: List[dict] = field(default_factory=list)

    imageId: str = field(default="", init=False)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        region = state.getExn("region", str)
        instanceId = state.getExn("instance_id", str)

        name = buildRegionName(self.amiName, self.skipBuildRegion, self.encryptBootVolume)
        if name != self.amiName:
            ui.say("Creating intermediary AMI %s from instance %s" % (name, instanceId))
        else:
            ui.say("Creating AMI %s from instance %s" % (name, instanceId))

        params = {"InstanceId": instanceId, "Name": name}
        if self.amiMappings:
            params["BlockDeviceMappings"] = ec2Mappings(self.amiMappings)
        if self.tagSpecifications:
            params["TagSpecifications"] = self.tagSpecifications
        try:
            resp = ec2.create_image(**params)
        except Exception as e:
            return halt(state, RuntimeError("Error creating AMI: %s" % e))

        self.imageId = resp["ImageId"]
        ui.message("AMI: %s" % self.imageId)
        state.put("amis", {region: self.imageId})

        ui.say("Waiting for AMI to become ready...")
        try:
            image = polling.waitUntilAmiAvailable(ctx, ec2, self.imageId, self.pollingConfig)
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError(
                "Error waiting for AMI %s to become ready: %s" % (self.imageId, e)
            ))

        publishImage(state, region, image)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        logKeptImages(state, logging.getLogger("StepCreateAmi"))


@dataclass
class StepRegisterAmi(object):
    amiName: str
    rootDevice: RootBlockDevice
    pollingConfig: PollingConfig
    amiMappings: List[BlockDevice] = field(default_factory=list)
    architecture: str = "x86_64"
    bootMode: str = ""
    enableAmiSriovNetSupport: bool = False
    enableAmiEnaSupport: Optional[bool] = None
    skipBuildRegion: bool = False
    encryptBootVolume: Optional[bool] = None

    snapshotId: str = field(default="", init=False)
    imageId: str = field(default="", init=False)

    def rootMapping(self) -> dict:
        ebs = {
            "SnapshotId": self.snapshotId,
            "DeleteOnTermination": self.rootDevice.deleteOnTermination,
        }
        if self.rootDevice.volumeType:
            ebs["VolumeType"] = self.rootDevice.volumeType
        if self.rootDevice.volumeSize:
            ebs["VolumeSize"] = self.rootDevice.volumeSize
        if self.rootDevice.iops:
            ebs["Iops"] = self.rootDevice.iops
        return {"DeviceName": self.rootDevice.deviceName, "Ebs": ebs}

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        region = state.getExn("region", str)
        instance = state.getExn("instance", dict)

        volumeId = attachedVolumes(instance).get(self.rootDevice.sourceDeviceName)
        if volumeId is None:
            return halt(state, RuntimeError(
                "Volume ID for source device %s not found" % self.rootDevice.sourceDeviceName
            ))

        ui.say("Creating snapshot of the root volume %s..." % volumeId)
        try:
            snapshot = ec2.create_snapshot(VolumeId=volumeId)
        except Exception as e:
            return halt(state, RuntimeError("Error creating root volume snapshot: %s" % e))
        self.snapshotId = snapshot["SnapshotId"]

        try:
            polling.waitUntilSnapshotDone(ctx, ec2, self.snapshotId, self.pollingConfig)
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError(
                "Error waiting for snapshot %s: %s" % (self.snapshotId, e)
            ))

        mappings = [self.rootMapping()] + [
            m for m in ec2Mappings(self.amiMappings)
            if m["DeviceName"] != self.rootDevice.deviceName
        ]
        params = {
            "Name": buildRegionName(self.amiName, self.skipBuildRegion, self.encryptBootVolume),
            "Architecture": self.architecture,
            "RootDeviceName": self.rootDevice.deviceName,
            "VirtualizationType": "hvm",
            "BlockDeviceMappings": mappings,
        }
        if self.bootMode:
            params["BootMode"] = self.bootMode
        if self.enableAmiSriovNetSupport:
            params["SriovNetSupport"] = "simple"
        if self.enableAmiEnaSupport:
            params["EnaSupport"] = True

        ui.say("Registering the AMI...")
        try:
            resp = ec2.register_image(**params)
        except Exception as e:
            return halt(state, RuntimeError("Error registering AMI: %s" % e))
        self.imageId = resp["ImageId"]
        ui.message("AMI: %s" % self.imageId)
        state.put("amis", {region: self.imageId})

        ui.say("Waiting for AMI to become ready...")
        try:
            image = polling.waitUntilAmiAvailable(ctx, ec2, self.imageId, self.pollingConfig)
        except BuildCancelled:
            raise
        except Exception as e:
            return halt(state, RuntimeError(
                "Error waiting for AMI %s to become ready: %s" % (self.imageId, e)
            ))

        publishImage(state, region, image)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        log = logging.getLogger("StepRegisterAmi")
        if self.snapshotId and not self.imageId:
            ui = state.get("ui")
            if ui is not None:
                ui.say("Deleting the unused root volume snapshot...")
            state.getExn("ec2").delete_snapshot(SnapshotId=self.snapshotId)
            return
        logKeptImages(state, log)
