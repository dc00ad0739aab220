#
# ebsVolume.py - Builds EBS volumes (and optionally snapshots of them) by
# provisioning a temporary instance they are attached to.
#
# No AMI is created. The volumes outlive the instance because their mappings
# are launched with delete_on_termination unset.
#
from dataclasses import dataclass, field
from typing import List, Optional

from buildObjects import StateBag
from awscommon.accessConfig import AccessConfig
from awscommon.artifact import EbsVolumeArtifact
from awscommon.blockDevices import BlockDevice, prepareBlockDevices
from awscommon.errors import ConfigError, MultiError
from awscommon.runConfig import RunConfig
from builders.base import BuilderBase, prepareCommon
from buildsteps.connect import StepConnect
from buildsteps.ebsVolumes import StepSnapshotEbsVolumes, StepTagEbsVolumes
from buildsteps.instanceState import StepCleanupTempKeys, StepModifyInstance, StepStopInstance
from buildsteps.provision import StepProvision

BUILDER_ID = "mitchellh.amazon.ebsvolume"


@dataclass
class EbsVolumeConfig(object):
    access: AccessConfig = field(default_factory=AccessConfig)
    run: RunConfig = field(default_factory=RunConfig)
    # Attached at launch; tags and snapshot settings apply per device
    volumeMappings: List[BlockDevice] = field(default_factory=list)
    enaSupport: Optional[bool] = None
    sriovNetSupport: bool = False


class Builder(BuilderBase):
    BUILDER_ID = BUILDER_ID
    name = "amazon-ebsvolume"

    def prepare(self) -> List[str]:
        c = self.config
        errs = MultiError()
        errs.append(*prepareCommon(c.access, c.run, c.sriovNetSupport, c.enaSupport))
        errs.append(*prepareBlockDevices(c.volumeMappings))

        for mapping in c.volumeMappings:
            if mapping.snapshotDescription and not mapping.snapshotVolume:
                errs.append(ConfigError(
                    "All `ebs_volumes` blocks setting `snapshot_description` "
                    "must also set `snapshot_volume`."
                ))

        if errs:
            raise errs
        return []

    def steps(self) -> list:
        c = self.config
        run = c.run
        return self.frontSteps(c.sriovNetSupport, c.enaSupport) + [
            self.instanceStep(c.volumeMappings),
            StepTagEbsVolumes(volumeMappings=c.volumeMappings),
            StepConnect(
                username=run.comm.sshUsername,
                port=run.comm.sshPort,
                host=run.comm.sshHost,
                sshTimeout=run.comm.sshTimeout,
                sshInterface=run.comm.sshInterface,
            ),
            StepProvision(),
            StepCleanupTempKeys(
                clearAuthorizedKeys=run.comm.sshClearAuthorizedKeys,
                temporaryKeyPairName=run.comm.sshTemporaryKeyPairName,
            ),
            StepStopInstance(
                pollingConfig=run.pollingConfig,
                spot=run.isSpotInstance(),
                disableStopInstance=run.disableStopInstance,
            ),
            StepModifyInstance(
                enableAmiSriovNetSupport=c.sriovNetSupport,
                enableAmiEnaSupport=c.enaSupport,
            ),
            StepSnapshotEbsVolumes(
                pollingConfig=run.pollingConfig,
                volumeMappings=c.volumeMappings,
            ),
        ]

    def artifact(self, state: StateBag) -> EbsVolumeArtifact:
        return EbsVolumeArtifact(
            volumes=state.getExn("ebsvolumes", dict),
            snapshots=state.get("ebssnapshots") or {},
            builderId=BUILDER_ID,
            clientFactory=state.getExn("client_factory"),
            stateData={"generated_data": state.get("generated_data")},
        )
