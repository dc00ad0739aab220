#
# runConfig.py - How the temporary build instance is launched and reached.
#
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config import Config
from awscommon.errors import ConfigError
from awscommon.polling import PollingConfig

TENANCIES = ("", "default", "dedicated", "host")
SHUTDOWN_BEHAVIORS = ("", "stop", "terminate")
SSH_INTERFACES = ("", "public_ip", "private_ip", "public_dns", "private_dns")
HTTP_TOKENS = ("", "optional", "required")


@dataclass
class SourceAmiFilter(object):
    filters: Dict[str, str] = field(default_factory=dict)
    owners: List[str] = field(default_factory=list)
    mostRecent: bool = False

    def empty(self) -> bool:
        return not self.filters and not self.owners


@dataclass
class MetadataOptions(object):
    httpEndpoint: str = "enabled"
    httpTokens: str = ""
    httpPutResponseHopLimit: int = 0
    instanceMetadataTags: str = ""

    def ec2Options(self) -> dict:
        options = {"HttpEndpoint": self.httpEndpoint}
        if self.httpTokens:
            options["HttpTokens"] = self.httpTokens
        if self.httpPutResponseHopLimit:
            options["HttpPutResponseHopLimit"] = self.httpPutResponseHopLimit
        if self.instanceMetadataTags:
            options["InstanceMetadataTags"] = self.instanceMetadataTags
        return options


@dataclass
class CommConfig(object):
    """Communicator settings; only ssh is supported"""

    sshUsername: str = ""
    sshPort: int = 22
    sshHost: str = ""
    sshInterface: str = ""
    sshPrivateKeyFile: str = ""
    sshKeypairName: str = ""
    sshTemporaryKeyPairName: str = ""
    sshTimeout: int = Config.SSH_TIMEOUT
    # Remove the temporary key from authorized_keys before the image is taken
    sshClearAuthorizedKeys: bool = False

    def prepare(self) -> List[Exception]:
        errs: List[Exception] = []
        if not self.sshUsername:
            errs.append(ConfigError("An ssh_username must be specified"))
        if self.sshPrivateKeyFile and not os.path.isfile(self.sshPrivateKeyFile):
            errs.append(ConfigError(
                "ssh_private_key_file is invalid: %s is not a file" % self.sshPrivateKeyFile
            ))
        if self.sshKeypairName and not self.sshPrivateKeyFile:
            errs.append(ConfigError(
                "ssh_private_key_file must be provided to use ssh_keypair_name"
            ))
        if self.sshInterface not in SSH_INTERFACES:
            errs.append(ConfigError("Unknown interface type: %s" % self.sshInterface))
        return errs


@dataclass
class RunConfig(object):
    sourceAmi: str = ""
    sourceAmiFilter: SourceAmiFilter = field(default_factory=SourceAmiFilter)
    instanceType: str = ""
    spotPrice: str = ""
    spotInstanceTypes: List[str] = field(default_factory=list)
    spotTags: Dict[str, str] = field(default_factory=dict)
    runTags: Dict[str, str] = field(default_factory=dict)
    volumeRunTags: Dict[str, str] = field(default_factory=dict)
    vpcId: str = ""
    subnetId: str = ""
    availabilityZone: str = ""
    securityGroupIds: List[str] = field(default_factory=list)
    temporarySGSourceCidrs: List[str] = field(default_factory=list)
    associatePublicIpAddress: Optional[bool] = None
    iamInstanceProfile: str = ""
    temporaryIamInstanceProfilePolicyDocument: Optional[dict] = None
    placementTenancy: str = ""
    # Deprecated in favor of placementTenancy
    tenancy: str = ""
    userData: str = ""
    userDataFile: str = ""
    ebsOptimized: bool = False
    instanceInitiatedShutdownBehavior: str = ""
    disableStopInstance: bool = False
    metadata: MetadataOptions = field(default_factory=MetadataOptions)
    comm: CommConfig = field(default_factory=CommConfig)
    pollingConfig: PollingConfig = field(default_factory=PollingConfig)

    def isSpotInstance(self) -> bool:
        return self.spotPrice not in ("", "0")

    def resolvedTenancy(self) -> str:
        for tenancy in (self.placementTenancy, self.tenancy):
            if tenancy:
                return tenancy
        return ""

    def prepare(self) -> List[Exception]:
        errs: List[Exception] = []

        if not self.sourceAmi and self.sourceAmiFilter.empty():
            errs.append(ConfigError("A source_ami or source_ami_filter must be specified"))
        if self.sourceAmiFilter.filters and not self.sourceAmiFilter.owners:
            errs.append(ConfigError("For security reasons, your source AMI filter must declare an owner."))

        if not self.instanceType and not self.spotInstanceTypes:
            errs.append(ConfigError("An instance_type must be specified"))
        if self.instanceType and self.spotInstanceTypes:
            errs.append(ConfigError(
                "instance_type and spot_instance_types cannot both be set"
            ))
        if self.spotInstanceTypes and not self.isSpotInstance():
            errs.append(ConfigError("spot_instance_types requires spot_price to be set"))

        if self.spotPrice and self.spotPrice not in ("auto", "0"):
            try:
                float(self.spotPrice)
            except ValueError:
                errs.append(ConfigError(
                    "spot_price must be a number or \"auto\", got %r" % self.spotPrice
                ))
        if self.spotTags and not self.isSpotInstance():
            errs.append(ConfigError("spot_tags should not be set when not requesting a spot instance"))

        if self.userData and self.userDataFile:
            errs.append(ConfigError("Only one of user_data or user_data_file can be specified."))
        elif self.userDataFile and not os.path.isfile(self.userDataFile):
            errs.append(ConfigError("user_data_file not found: %s" % self.userDataFile))

        for name, value in (("placement.tenancy", self.placementTenancy), ("tenancy", self.tenancy)):
            if value not in TENANCIES:
                errs.append(ConfigError(
                    "%s must be one of default, dedicated or host, got %r" % (name, value)
                ))
        if self.placementTenancy and self.tenancy and self.placementTenancy != self.tenancy:
            errs.append(ConfigError("tenancy and placement.tenancy conflict, only set one"))

        if self.instanceInitiatedShutdownBehavior not in SHUTDOWN_BEHAVIORS:
            errs.append(ConfigError(
                "shutdown_behavior only accepts 'stop' or 'terminate' values."
            ))
        if self.metadata.httpTokens not in HTTP_TOKENS:
            errs.append(ConfigError("http_tokens must be one of optional or required"))

        if self.iamInstanceProfile and self.temporaryIamInstanceProfilePolicyDocument:
            errs.append(ConfigError(
                "You cannot specify both iam_instance_profile and "
                "temporary_iam_instance_profile_policy_document"
            ))

        errs.extend(self.comm.prepare())
        return errs
