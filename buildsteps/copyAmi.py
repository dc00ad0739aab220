#
# copyAmi.py - Copy the AMI to the other regions, and re-encrypt it in the
# build region when encryption was asked for.
#
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon import polling
from awscommon.artifact import destroyAmis, imageSnapshotIds
from awscommon.polling import PollingConfig
from buildsteps.interface import Action, halt


@dataclass
class StepCopyAmi(object):
    amiName: str
    pollingConfig: PollingConfig
    regions: List[str] = field(default_factory=list)
    encryptBootVolume: Optional[bool] = None
    kmsKeyId: str = ""
    regionKmsKeyIds: Dict[str, str] = field(default_factory=dict)
    skipBuildRegion: bool = False
    description: str = ""

    def copy(self, ctx, ec2, sourceRegion, sourceImageId, region) -> dict:
        params = {
            "SourceRegion": sourceRegion,
            "SourceImageId": sourceImageId,
            "Name": self.amiName,
        }
        if self.description:
            params["Description"] = self.description
        if self.encryptBootVolume is not None:
            params["Encrypted"] = self.encryptBootVolume
        kmsKeyId = self.regionKmsKeyIds.get(region) or (
            self.kmsKeyId if region == sourceRegion else ""
        )
        if kmsKeyId:
            params["KmsKeyId"] = kmsKeyId
        resp = ec2.copy_image(**params)
        return polling.waitUntilAmiAvailable(ctx, ec2, resp["ImageId"], self.pollingConfig)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ui = state.getExn("ui")
        clientFactory = state.getExn("client_factory")
        region = state.getExn("region", str)
        amis = dict(state.getExn("amis", dict))
        snapshots = dict(state.get("snapshots") or {})
        sourceImageId = amis[region]

        # Re-encrypting replaces the build region AMI with an encrypted copy
        reEncrypt = self.encryptBootVolume is True and not self.skipBuildRegion
        if not self.regions and not reEncrypt and not self.skipBuildRegion:
            return Action.CONTINUE

        targets = list(self.regions)
        if reEncrypt:
            targets.insert(0, region)

        for target in targets:
            ui.message("Copying %s to: %s" % (sourceImageId, target))
            try:
                image = self.copy(ctx, clientFactory(target), region, sourceImageId, target)
            except BuildCancelled:
                raise
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error copying AMI (%s) to region (%s): %s" % (sourceImageId, target, e)
                ))
            amis[target] = image["ImageId"]
            snapshots[target] = imageSnapshotIds(image)
            state.put("amis", dict(amis))
            state.put("snapshots", dict(snapshots))

        if reEncrypt or self.skipBuildRegion:
            if self.skipBuildRegion:
                ui.say("Deregistering the intermediary AMI %s..." % sourceImageId)
                amis.pop(region, None)
                snapshots.pop(region, None)
            else:
                ui.say("Deregistering the unencrypted AMI %s..." % sourceImageId)
            try:
                destroyAmis(clientFactory(region), [sourceImageId])
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error deregistering AMI %s: %s" % (sourceImageId, e)
                ))
            state.put("amis", amis)
            state.put("snapshots", snapshots)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
