#
# amiConfig.py - Settings of the AMI a build produces, and their validation.
#
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from awscommon.accessConfig import AccessConfig
from awscommon.errors import ConfigError
from awscommon.template import cleanResourceName, renderTemplate

log = logging.getLogger(__name__)

IMDS_SUPPORT_V2 = "v2.0"

_KMS_KEY_ID = r"[a-f0-9]+[a-f0-9-]+$"
_KMS_MRK_KEY_ID = r"mrk-[a-f0-9]+[a-f0-9-]+$"
_KMS_ALIAS = r"alias/[a-zA-Z0-9:/_-]+$"
_KMS_ARN_START = r"^arn:aws(-[a-z]{2}(-gov)?)?:kms:([a-z]{2}-(gov-)?[a-z]+-\d{1})?:(\d{12}):"

_KMS_PATTERNS = [
    re.compile("^" + _KMS_KEY_ID),
    re.compile("^" + _KMS_MRK_KEY_ID),
    re.compile("^" + _KMS_ALIAS),
    re.compile(_KMS_ARN_START + "key/" + _KMS_KEY_ID),
    re.compile(_KMS_ARN_START + "key/" + _KMS_MRK_KEY_ID),
    re.compile(_KMS_ARN_START + _KMS_ALIAS),
]


def validateKmsKey(kmsKey: str) -> bool:
    """validateKmsKey - Accepts a key id, a multi-region key id, an alias, or
    the ARN of any of those. See the KmsKeyId parameter of CopyImage.
    """
    return any(pattern.match(kmsKey) for pattern in _KMS_PATTERNS)


def validateAmiName(name: str) -> List[Exception]:
    errs: List[Exception] = []
    if len(name) < 3 or len(name) > 128:
        errs.append(ConfigError("ami_name must be between 3 and 128 characters long"))
    if name != cleanResourceName(name):
        errs.append(ConfigError(
            "AMIName should only contain alphanumeric characters, parentheses "
            "(()), square brackets ([]), spaces ( ), periods (.), slashes (/), "
            "dashes (-), single quotes ('), at-signs (@), or underscores(_). "
            "You can use the `clean_resource_name` template filter to "
            "automatically clean your ami name."
        ))
    return errs


def validateImdsSupport(value: str) -> Optional[Exception]:
    if value and value != IMDS_SUPPORT_V2:
        return ConfigError(
            "The only valid imds_support values are %r or the empty string" % IMDS_SUPPORT_V2
        )
    return None


@dataclass
class DeregistrationProtection(object):
    enabled: bool = False
    # Keep protection for 24 hours after it is turned off; implies enabled
    withCooldown: bool = False


@dataclass
class AMIConfig(object):
    name: str = ""
    description: str = ""
    virtualizationType: str = ""
    users: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    orgArns: List[str] = field(default_factory=list)
    ouArns: List[str] = field(default_factory=list)
    productCodes: List[str] = field(default_factory=list)
    regions: List[str] = field(default_factory=list)
    skipRegionValidation: bool = False
    tags: Dict[str, str] = field(default_factory=dict)
    enaSupport: Optional[bool] = None
    sriovNetSupport: bool = False
    forceDeregister: bool = False
    forceDeleteSnapshot: bool = False
    encryptBootVolume: Optional[bool] = None
    kmsKeyId: str = ""
    regionKmsKeyIds: Dict[str, str] = field(default_factory=dict)
    skipBuildRegion: bool = False
    imdsSupport: str = ""
    deprecationTime: str = ""
    snapshotTags: Dict[str, str] = field(default_factory=dict)
    snapshotUsers: List[str] = field(default_factory=list)
    snapshotGroups: List[str] = field(default_factory=list)
    deregistrationProtection: DeregistrationProtection = field(
        default_factory=DeregistrationProtection
    )

    def prepare(self, accessConfig: Optional[AccessConfig] = None) -> List[Exception]:
        errs: List[Exception] = []

        if not self.name:
            errs.append(ConfigError("ami_name must be specified"))

        for region in self.regionKmsKeyIds:
            if region not in self.regions:
                errs.append(ConfigError(
                    "Region %s is in region_kms_key_ids but not in ami_regions" % region
                ))

        errs.extend(self.prepareRegions(accessConfig))

        encrypted = self.encryptBootVolume is True
        if self.users or self.orgArns or self.ouArns:
            if not self.kmsKeyId and not self.regionKmsKeyIds and encrypted:
                errs.append(ConfigError("Cannot share AMI encrypted with default KMS key"))
            if any(not key for key in self.regionKmsKeyIds.values()):
                errs.append(ConfigError(
                    "Cannot share AMI encrypted with default KMS key for other regions"
                ))

        kmsKeys = []
        if self.kmsKeyId:
            kmsKeys.append(self.kmsKeyId)
        kmsKeys.extend(key for key in self.regionKmsKeyIds.values() if key)

        if kmsKeys and not encrypted:
            errs.append(ConfigError(
                "If you have set either region_kms_key_ids or kms_key_id, "
                "encrypt_boot must also be true."
            ))
        for kmsKey in kmsKeys:
            if not validateKmsKey(kmsKey):
                errs.append(ConfigError("%r is not a valid KMS Key Id." % kmsKey))

        if self.snapshotUsers:
            if not self.kmsKeyId and not self.regionKmsKeyIds and encrypted:
                errs.append(ConfigError("Cannot share snapshot encrypted with default KMS key"))
            if any(not key for key in self.regionKmsKeyIds.values()):
                errs.append(ConfigError("Cannot share snapshot encrypted with default KMS key"))

        if self.name:
            # Rendered once here; every step then uses the same name
            try:
                self.name = renderTemplate(self.name)
            except ConfigError as e:
                errs.append(e)
            else:
                errs.extend(validateAmiName(self.name))

        imdsErr = validateImdsSupport(self.imdsSupport)
        if imdsErr is not None:
            errs.append(imdsErr)

        if self.deprecationTime:
            try:
                datetime.strptime(self.deprecationTime, "%Y-%m-%dT%H:%M:%SZ")
            except ValueError:
                errs.append(ConfigError(
                    "deprecate_at is not a valid time: %r. Expect time format: "
                    "YYYY-MM-DDTHH:MM:SSZ" % self.deprecationTime
                ))

        if self.deregistrationProtection.withCooldown:
            self.deregistrationProtection.enabled = True

        return errs

    def prepareRegions(self, accessConfig: Optional[AccessConfig]) -> List[Exception]:
        """prepareRegions - De-duplicate ami_regions and drop the build region,
        the AMI already exists there.
        """
        errs: List[Exception] = []
        if not self.regions:
            return errs
        regions: List[str] = []
        for region in self.regions:
            if region in regions:
                continue
            if self.regionKmsKeyIds and region not in self.regionKmsKeyIds:
                errs.append(ConfigError(
                    "Region %s is in ami_regions but not in region_kms_key_ids" % region
                ))
            if accessConfig is not None and region == accessConfig.region:
                log.info(
                    "Cannot copy AMI to AWS session region '%s', deleting it from `ami_regions`."
                    % region
                )
                continue
            regions.append(region)
        self.regions = regions
        return errs
