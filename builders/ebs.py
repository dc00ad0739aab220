#
# ebs.py - Builds an AMI from a temporary EBS backed instance.
#
# The instance is launched from a source AMI, provisioned by the hook, stopped
# and imaged. The image is then copied to the other regions and gets its
# attributes and tags.
#
from dataclasses import dataclass, field
from typing import List, Optional

from buildObjects import StateBag
from awscommon.accessConfig import AccessConfig
from awscommon.amiConfig import AMIConfig
from awscommon.artifact import Artifact
from awscommon.blockDevices import BlockDevice, RootBlockDevice, prepareBlockDevices
from awscommon.errors import ConfigError, MultiError
from awscommon.runConfig import RunConfig
from builders.base import BuilderBase, prepareCommon
from buildsteps.amiAttributes import (
    StepCreateTags,
    StepEnableDeprecation,
    StepEnableDeregistrationProtection,
    StepModifyAmiAttributes,
)
from buildsteps.connect import StepConnect
from buildsteps.copyAmi import StepCopyAmi
from buildsteps.createAmi import StepCreateAmi, StepRegisterAmi
from buildsteps.deregisterAmi import StepDeregisterAmi
from buildsteps.ebsVolumes import StepTagEbsVolumes
from buildsteps.instanceState import StepCleanupTempKeys, StepModifyInstance, StepStopInstance
from buildsteps.provision import StepProvision

BUILDER_ID = "mitchellh.amazonebs"


@dataclass
class EbsConfig(object):
    access: AccessConfig = field(default_factory=AccessConfig)
    run: RunConfig = field(default_factory=RunConfig)
    ami: AMIConfig = field(default_factory=AMIConfig)
    # Devices attached to the build instance
    launchMappings: List[BlockDevice] = field(default_factory=list)
    # Devices recorded in the AMI
    amiMappings: List[BlockDevice] = field(default_factory=list)
    # Set to register the AMI from a snapshot of one device instead of
    # imaging the whole instance
    rootDevice: Optional[RootBlockDevice] = None
    architecture: str = "x86_64"
    bootMode: str = ""


class Builder(BuilderBase):
    BUILDER_ID = BUILDER_ID
    name = "amazon-ebs"

    def __init__(self, config: EbsConfig):
        super().__init__(config)
        self.amiName = ""

    def prepare(self) -> List[str]:
        """prepare - Validate the whole configuration.

        Raises a MultiError with every problem found. Returns warnings.
        """
        c = self.config
        warns: List[str] = []
        errs = MultiError()
        errs.append(*prepareCommon(c.access, c.run, c.ami.sriovNetSupport, c.ami.enaSupport))
        errs.append(*c.ami.prepare(c.access))
        errs.append(*prepareBlockDevices(c.launchMappings))
        errs.append(*prepareBlockDevices(c.amiMappings))
        if c.rootDevice is not None:
            errs.append(*c.rootDevice.prepare())

        if c.ami.skipBuildRegion and not c.ami.regions:
            errs.append(ConfigError(
                "skip_save_build_region requires at least one other region in ami_regions"
            ))
        if c.ami.kmsKeyId and c.ami.encryptBootVolume is not True:
            warns.append("kms_key_id is only used when encrypt_boot is true")
        if c.run.isSpotInstance() and c.run.disableStopInstance:
            warns.append("disable_stop_instance has no effect on spot instances")

        if errs:
            raise errs
        return warns

    def steps(self) -> list:
        c = self.config
        run = c.run
        ami = c.ami
        self.amiName = ami.name

        if c.rootDevice is not None and c.rootDevice.imageMethod == "register":
            imageStep = StepRegisterAmi(
                amiName=self.amiName,
                rootDevice=c.rootDevice,
                pollingConfig=run.pollingConfig,
                amiMappings=c.amiMappings,
                architecture=c.architecture,
                bootMode=c.bootMode,
                enableAmiSriovNetSupport=ami.sriovNetSupport,
                enableAmiEnaSupport=ami.enaSupport,
                skipBuildRegion=ami.skipBuildRegion,
                encryptBootVolume=ami.encryptBootVolume,
            )
        else:
            imageStep = StepCreateAmi(
                amiName=self.amiName,
                pollingConfig=run.pollingConfig,
                amiMappings=c.amiMappings,
                skipBuildRegion=ami.skipBuildRegion,
                encryptBootVolume=ami.encryptBootVolume,
            )

        return self.frontSteps(ami.sriovNetSupport, ami.enaSupport) + [
            self.instanceStep(c.launchMappings),
            StepTagEbsVolumes(volumeMappings=[]),
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
                enableAmiSriovNetSupport=ami.sriovNetSupport,
                enableAmiEnaSupport=ami.enaSupport,
            ),
            StepDeregisterAmi(
                amiName=self.amiName,
                forceDeregister=ami.forceDeregister,
                forceDeleteSnapshot=ami.forceDeleteSnapshot,
                regions=ami.regions,
            ),
            imageStep,
            StepCopyAmi(
                amiName=self.amiName,
                pollingConfig=run.pollingConfig,
                regions=ami.regions,
                encryptBootVolume=ami.encryptBootVolume,
                kmsKeyId=ami.kmsKeyId,
                regionKmsKeyIds=ami.regionKmsKeyIds,
                skipBuildRegion=ami.skipBuildRegion,
                description=ami.description,
            ),
            StepModifyAmiAttributes(
                description=ami.description,
                users=ami.users,
                groups=ami.groups,
                orgArns=ami.orgArns,
                ouArns=ami.ouArns,
                productCodes=ami.productCodes,
                imdsSupport=ami.imdsSupport,
                snapshotUsers=ami.snapshotUsers,
                snapshotGroups=ami.snapshotGroups,
            ),
            StepEnableDeregistrationProtection(protection=ami.deregistrationProtection),
            StepEnableDeprecation(deprecationTime=ami.deprecationTime),
            StepCreateTags(tags=ami.tags, snapshotTags=ami.snapshotTags),
        ]

    def artifact(self, state: StateBag) -> Artifact:
        return Artifact(
            amis=state.getExn("amis", dict),
            builderId=BUILDER_ID,
            clientFactory=state.getExn("client_factory"),
            stateData={"generated_data": state.get("generated_data")},
        )
