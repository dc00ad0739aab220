#
# base.py - What the AMI and EBS volume builders have in common: the session
# and state bag setup, the steps that get an instance running, and turning
# the runner outcome into a result or an exception.
#
import logging
import uuid
from typing import List, Optional

from config import Config
from buildObjects import BuildCancelled, RunContext, StateBag
from buildUi import BuildUi
from stepRunner import RunnerStatus, StepRunner
from awscommon.accessConfig import AccessConfig
from awscommon.blockDevices import BlockDevice
from awscommon.errors import ConfigError
from awscommon.runConfig import RunConfig
from buildsteps.iamInstanceProfile import StepIamInstanceProfile
from buildsteps.keyPair import StepKeyPair
from buildsteps.networkInfo import StepNetworkInfo
from buildsteps.runSourceInstance import StepRunSourceInstance
from buildsteps.runSpotInstance import StepRunSpotInstance
from buildsteps.securityGroup import StepSecurityGroup
from buildsteps.sourceAmiInfo import StepSourceAmiInfo


def prepareCommon(access: AccessConfig, run: RunConfig, sriov: bool, ena) -> List[Exception]:
    errs: List[Exception] = []
    errs.extend(access.prepare())
    errs.extend(run.prepare())
    if run.isSpotInstance() and (ena is True or sriov):
        errs.append(ConfigError(
            "Spot instances do not support modification, which is required "
            "when either `ena_support` or `sriov_support` are set. Please ensure "
            "you use an AMI that already has either SR-IOV or ENA enabled."
        ))
    if not run.comm.sshKeypairName and not run.comm.sshPrivateKeyFile:
        if not run.comm.sshTemporaryKeyPairName:
            run.comm.sshTemporaryKeyPairName = "%s_%s" % (Config.PREFIX, uuid.uuid4())
    return errs


class BuilderBase(object):
    BUILDER_ID = ""
    name = "amazon"

    def __init__(self, config):
        self.config = config
        self.log = logging.getLogger(type(self).__name__)
        self.runner: Optional[StepRunner] = None

    def newState(self, ui, hook) -> StateBag:
        access = self.config.access
        session = access.session()
        clients = {}

        def clientFactory(region):
            if region not in clients:
                clients[region] = access.session(region).client("ec2")
            return clients[region]

        state = StateBag()
        state.put("config", self.config)
        state.put("region", access.region)
        state.put("ec2", clientFactory(access.region))
        state.put("iam", session.client("iam"))
        state.put("client_factory", clientFactory)
        state.put("ui", ui)
        state.put("hook", hook)
        state.put("generated_data", {})
        return state

    def instanceStep(self, launchMappings: List[BlockDevice]):
        run = self.config.run
        if run.isSpotInstance():
            self.log.info("Using Spot Instance")
            return StepRunSpotInstance(
                pollingConfig=run.pollingConfig,
                spotPrice=run.spotPrice,
                instanceType=run.instanceType,
                spotInstanceTypes=run.spotInstanceTypes,
                launchMappings=launchMappings,
                associatePublicIpAddress=run.associatePublicIpAddress,
                ebsOptimized=run.ebsOptimized,
                tags=run.runTags,
                spotTags=run.spotTags,
                volumeTags=run.volumeRunTags,
                userData=run.userData,
                userDataFile=run.userDataFile,
                sshInterface=run.comm.sshInterface,
            )
        return StepRunSourceInstance(
            instanceType=run.instanceType,
            pollingConfig=run.pollingConfig,
            launchMappings=launchMappings,
            associatePublicIpAddress=run.associatePublicIpAddress,
            ebsOptimized=run.ebsOptimized,
            instanceInitiatedShutdownBehavior=run.instanceInitiatedShutdownBehavior,
            metadata=run.metadata,
            tenancy=run.resolvedTenancy(),
            tags=run.runTags,
            volumeTags=run.volumeRunTags,
            userData=run.userData,
            userDataFile=run.userDataFile,
            sshInterface=run.comm.sshInterface,
        )

    def frontSteps(self, sriov: bool, ena) -> list:
        """frontSteps - Everything needed before the instance is launched"""
        run = self.config.run
        return [
            StepSourceAmiInfo(
                sourceAmi=run.sourceAmi,
                amiFilter=run.sourceAmiFilter,
                enableAmiSriovNetSupport=sriov,
                enableAmiEnaSupport=ena,
            ),
            StepNetworkInfo(
                vpcId=run.vpcId,
                subnetId=run.subnetId,
                availabilityZone=run.availabilityZone,
            ),
            StepKeyPair(
                keyPairName=run.comm.sshKeypairName,
                privateKeyFile=run.comm.sshPrivateKeyFile,
                temporaryKeyPairName=run.comm.sshTemporaryKeyPairName,
            ),
            StepSecurityGroup(
                securityGroupIds=run.securityGroupIds,
                sshPort=run.comm.sshPort,
                sourceCidrs=run.temporarySGSourceCidrs,
            ),
            StepIamInstanceProfile(
                pollingConfig=run.pollingConfig,
                iamInstanceProfile=run.iamInstanceProfile,
                policyDocument=run.temporaryIamInstanceProfilePolicyDocument,
            ),
        ]

    def steps(self) -> list:
        raise NotImplementedError

    def artifact(self, state: StateBag):
        raise NotImplementedError

    def run(self, ctx: Optional[RunContext] = None, ui: Optional[BuildUi] = None, hook=None):
        """run - Build and return the artifact.

        Raises the first error a step reported, or BuildCancelled, once every
        cleanup has run.
        """
        if ctx is None:
            ctx = RunContext()
        ownUi = ui is None
        if ownUi:
            ui = BuildUi(self.name, self.config.access.secrets())
        else:
            ui.secretFilter.set(*self.config.access.secrets())

        try:
            self.config.run.pollingConfig.logEnvOverrideWarnings()
            state = self.newState(ui, hook)
            self.runner = StepRunner(self.steps())
            status = self.runner.run(ctx, state)

            err, ok = state.getOk("error")
            if ok:
                raise err
            if status == RunnerStatus.CANCELLED:
                raise BuildCancelled()
            if status == RunnerStatus.HALTED:
                raise RuntimeError("Build was halted.")

            artifact = self.artifact(state)
            ui.say("Build finished: %s" % artifact.id())
            return artifact
        finally:
            if ownUi:
                ui.close()
