#
# ebsVolumes.py - Tag the EBS volumes attached to the build instance and
# snapshot the ones marked for it.
#
from dataclasses import dataclass, field
from typing import List

from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon import polling
from awscommon.blockDevices import BlockDevice
from awscommon.polling import PollingConfig
from awscommon.retry import Backoff, RetryConfig
from awscommon.template import ec2Tags, renderTags
from buildsteps.interface import Action, halt


def attachedVolumes(instance: dict) -> dict:
    """attachedVolumes - Device name => volume id for the instance's EBS volumes"""
    volumes = {}
    for mapping in instance.get("BlockDeviceMappings", []):
        ebs = mapping.get("Ebs") or {}
        if ebs.get("VolumeId"):
            volumes[mapping["DeviceName"]] = ebs["VolumeId"]
    return volumes


@dataclass
class StepTagEbsVolumes(object):
    """Apply the per-device tags of the volume mappings and publish the
    volumes as ebsvolumes (region => volume ids).
    """

    volumeMappings: List[BlockDevice] = field(default_factory=list)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        region = state.getExn("region", str)
        state.put("ebsvolumes", {region: []})
        if not self.volumeMappings:
            return Action.CONTINUE

        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        instance = state.getExn("instance", dict)
        data = state.get("generated_data") or {}
        volumes = attachedVolumes(instance)

        created = []
        retry = RetryConfig(tries=11, retryDelay=Backoff(0.2, 30, 2))
        for mapping in self.volumeMappings:
            volumeId = volumes.get(mapping.deviceName)
            if volumeId is None:
                continue
            created.append(volumeId)
            if not mapping.tags:
                continue
            tags = ec2Tags(renderTags(mapping.tags, data))
            ui.message("Tagging volume %s (%s)" % (volumeId, mapping.deviceName))
            try:
                retry.run(
                    ctx,
                    lambda _: ec2.create_tags(Resources=[volumeId], Tags=tags),
                    "tag volume %s" % volumeId,
                )
            except BuildCancelled:
                raise
            except Exception as e:
                return halt(state, RuntimeError("Error tagging EBS volume %s: %s" % (volumeId, e)))

        state.put("ebsvolumes", {region: created})
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass


@dataclass
class StepSnapshotEbsVolumes(object):
    pollingConfig: PollingConfig
    volumeMappings: List[BlockDevice] = field(default_factory=list)

    snapshotIds: List[str] = field(default_factory=list, init=False)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        region = state.getExn("region", str)
        state.put("ebssnapshots", {region: []})

        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")
        instance = state.getExn("instance", dict)
        data = state.get("generated_data") or {}
        volumes = attachedVolumes(instance)

        for mapping in self.volumeMappings:
            if not mapping.snapshotVolume:
                continue
            volumeId = volumes.get(mapping.deviceName)
            if volumeId is None:
                continue
            ui.message("Requesting snapshot of volume: %s..." % volumeId)
            params = {"VolumeId": volumeId}
            if mapping.snapshotDescription:
                params["Description"] = mapping.snapshotDescription
            if mapping.snapshotTags:
                params["TagSpecifications"] = [{
                    "ResourceType": "snapshot",
                    "Tags": ec2Tags(renderTags(mapping.snapshotTags, data)),
                }]
            try:
                snapshot = ec2.create_snapshot(**params)
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error creating snapshot of volume %s: %s" % (volumeId, e)
                ))
            self.snapshotIds.append(snapshot["SnapshotId"])
            ui.message("Requested Snapshot of Volume %s: %s" % (volumeId, snapshot["SnapshotId"]))

        for snapshotId in self.snapshotIds:
            ui.message("Waiting for %s to complete..." % snapshotId)
            try:
                polling.waitUntilSnapshotDone(ctx, ec2, snapshotId, self.pollingConfig)
            except BuildCancelled:
                raise
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error waiting for snapshot %s to become ready: %s" % (snapshotId, e)
                ))

        state.put("ebssnapshots", {region: list(self.snapshotIds)})
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
