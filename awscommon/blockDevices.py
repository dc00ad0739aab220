#
# blockDevices.py - Block device mappings for the launched instance and AMI.
#
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from awscommon.errors import ConfigError

VOLUME_TYPES = ("standard", "gp2", "gp3", "io1", "io2", "st1", "sc1")


@dataclass
class BlockDevice(object):
    deviceName: str = ""
    deleteOnTermination: bool = False
    encrypted: Optional[bool] = None
    iops: int = 0
    throughput: int = 0
    noDevice: bool = False
    snapshotId: str = ""
    virtualName: str = ""
    volumeType: str = ""
    volumeSize: int = 0
    kmsKeyId: str = ""
    # Only used by the EBS volume builder
    tags: Dict[str, str] = field(default_factory=dict)
    snapshotVolume: bool = False
    snapshotDescription: str = ""
    snapshotTags: Dict[str, str] = field(default_factory=dict)

    def prepare(self) -> List[Exception]:
        errs: List[Exception] = []
        if not self.deviceName:
            errs.append(ConfigError("The `device_name` must be specified for every device in the block device mapping."))
        if self.volumeType and self.volumeType not in VOLUME_TYPES:
            errs.append(ConfigError("invalid volume_type %r for %s" % (self.volumeType, self.deviceName)))
        if self.iops and self.volumeType not in ("io1", "io2", "gp3"):
            errs.append(ConfigError("iops may only be specified for io1, io2 and gp3 volumes (%s)" % self.deviceName))
        if self.throughput and self.volumeType != "gp3":
            errs.append(ConfigError("throughput may only be specified for gp3 volumes (%s)" % self.deviceName))
        if self.iops < 0 or self.volumeSize < 0 or self.throughput < 0:
            errs.append(ConfigError("iops, throughput and volume_size must not be negative (%s)" % self.deviceName))
        if self.kmsKeyId and not self.encrypted:
            errs.append(ConfigError("The device %s, must also have `encrypted: true` when setting a kms_key_id." % self.deviceName))
        return errs

    def ec2Mapping(self) -> dict:
        mapping: dict = {"DeviceName": self.deviceName}
        if self.noDevice:
            mapping["NoDevice"] = ""
            return mapping
        if self.virtualName:
            mapping["VirtualName"] = self.virtualName
            return mapping

        ebs: dict = {"DeleteOnTermination": self.deleteOnTermination}
        if self.volumeType:
            ebs["VolumeType"] = self.volumeType
        if self.volumeSize:
            ebs["VolumeSize"] = self.volumeSize
        if self.iops:
            ebs["Iops"] = self.iops
        if self.throughput:
            ebs["Throughput"] = self.throughput
        if self.snapshotId:
            ebs["SnapshotId"] = self.snapshotId
        if self.encrypted is not None:
            ebs["Encrypted"] = self.encrypted
        if self.kmsKeyId:
            ebs["KmsKeyId"] = self.kmsKeyId
        mapping["Ebs"] = ebs
        return mapping


def prepareBlockDevices(devices: List[BlockDevice]) -> List[Exception]:
    errs: List[Exception] = []
    for device in devices:
        errs.extend(device.prepare())
    return errs


def ec2Mappings(devices: List[BlockDevice]) -> List[dict]:
    return [device.ec2Mapping() for device in devices]


@dataclass
class RootBlockDevice(object):
    """The volume an AMI is registered from when imageMethod is "register"."""

    sourceDeviceName: str = ""
    deviceName: str = ""
    deleteOnTermination: bool = False
    iops: int = 0
    volumeType: str = ""
    volumeSize: int = 0
    # "create" uses CreateImage on the instance, "register" snapshots the
    # source device and uses RegisterImage
    imageMethod: str = ""

    def prepare(self) -> List[Exception]:
        errs: List[Exception] = []
        if not self.sourceDeviceName:
            errs.append(ConfigError("source_device_name for the root_device must be specified"))
        if not self.deviceName:
            errs.append(ConfigError("device_name for the root_device must be specified"))
        if self.volumeType == "gp2" and self.iops != 0:
            errs.append(ConfigError("iops may not be specified for a gp2 volume"))
        if self.iops < 0:
            errs.append(ConfigError("iops must be greater than 0"))
        if self.volumeSize < 0:
            errs.append(ConfigError("volume_size must be greater than 0"))
        if self.imageMethod == "":
            self.imageMethod = "register"
        elif self.imageMethod not in ("create", "register"):
            errs.append(ConfigError("image_method must be 'create', 'register' or an empty string"))
        return errs
