#
# artifact.py - What a successful build hands back to its caller.
#
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional

from mypy_boto3_ec2 import EC2Client

log = logging.getLogger(__name__)

# Builds an EC2 client for a region
ClientFactory = Callable[[str], EC2Client]


def imageSnapshotIds(image: dict) -> List[str]:
    snapshots = []
    for device in image.get("BlockDeviceMappings", []):
        ebs = device.get("Ebs") or {}
        if ebs.get("SnapshotId"):
            snapshots.append(ebs["SnapshotId"])
    return snapshots


def destroyAmis(ec2: EC2Client, imageIds: List[str], deleteSnapshots=True) -> List[str]:
    """destroyAmis - Deregister the images and, optionally, delete their
    snapshots. Returns the ids of the deleted snapshots.
    """
    if not imageIds:
        return []
    resp = ec2.describe_images(ImageIds=list(imageIds))
    deleted = []
    for image in resp.get("Images", []):
        snapshots = imageSnapshotIds(image)
        log.info("Deregistering image %s" % image["ImageId"])
        ec2.deregister_image(ImageId=image["ImageId"])
        if not deleteSnapshots:
            continue
        for snapshotId in snapshots:
            log.info("Deleting snapshot %s of %s" % (snapshotId, image["ImageId"]))
            ec2.delete_snapshot(SnapshotId=snapshotId)
            deleted.append(snapshotId)
    return deleted


def _freeze(values: Mapping[str, List[str]]) -> Mapping[str, tuple]:
    return MappingProxyType({k: tuple(v) for k, v in values.items()})


@dataclass(frozen=True)
class Artifact(object):
    """Artifact - AMIs created by a build, one per region"""

    amis: Mapping[str, str]
    builderId: str
    clientFactory: Optional[ClientFactory] = field(default=None, compare=False, repr=False)
    stateData: Mapping[str, object] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "amis", MappingProxyType(dict(self.amis)))
        object.__setattr__(self, "stateData", MappingProxyType(dict(self.stateData)))

    def files(self) -> List[str]:
        return []

    def id(self) -> str:
        return ",".join("%s:%s" % (region, self.amis[region]) for region in sorted(self.amis))

    def state(self, name):
        return self.stateData.get(name)

    def __str__(self):
        lines = ["%s: %s" % (region, self.amis[region]) for region in sorted(self.amis)]
        return "AMIs were created:\n%s\n" % "\n".join(lines)

    def destroy(self) -> None:
        """destroy - Deregister every AMI and delete its snapshots. Every region
        is attempted; the failures are raised together at the end.
        """
        errors = []
        for region, imageId in sorted(self.amis.items()):
            log.info("Deregistering image ID (%s) from region (%s)" % (imageId, region))
            try:
                destroyAmis(self.clientFactory(region), [imageId])
            except Exception as e:
                log.error("Error deregistering %s in %s: %s" % (imageId, region, e))
                errors.append("%s: %s" % (region, e))
        if errors:
            raise RuntimeError("Error deregistering AMIs: %s" % "; ".join(errors))


@dataclass(frozen=True)
class EbsVolumeArtifact(object):
    """EbsVolumeArtifact - EBS volumes (and snapshots of them) per region"""

    volumes: Mapping[str, tuple]
    snapshots: Mapping[str, tuple]
    builderId: str
    clientFactory: Optional[ClientFactory] = field(default=None, compare=False, repr=False)
    stateData: Mapping[str, object] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "volumes", _freeze(self.volumes))
        object.__setattr__(self, "snapshots", _freeze(self.snapshots))
        object.__setattr__(self, "stateData", MappingProxyType(dict(self.stateData)))

    def files(self) -> List[str]:
        return []

    def id(self) -> str:
        parts = []
        for region in sorted(self.volumes):
            parts.extend("%s:%s" % (region, v) for v in self.volumes[region])
        return ",".join(parts)

    def state(self, name):
        return self.stateData.get(name)

    def __str__(self):
        lines = ["EBS Volumes were created:"]
        for region in sorted(self.volumes):
            lines.append("%s: %s" % (region, ", ".join(self.volumes[region])))
        if any(self.snapshots.values()):
            lines.append("EBS snapshots were created:")
            for region in sorted(self.snapshots):
                lines.append("%s: %s" % (region, ", ".join(self.snapshots[region])))
        return "\n".join(lines) + "\n"

    def destroy(self) -> None:
        errors = []
        for region in sorted(set(self.volumes) | set(self.snapshots)):
            ec2 = self.clientFactory(region)
            for volumeId in self.volumes.get(region, ()):
                log.info("Deleting volume %s in %s" % (volumeId, region))
                try:
                    ec2.delete_volume(VolumeId=volumeId)
                except Exception as e:
                    errors.append("%s: %s" % (volumeId, e))
            for snapshotId in self.snapshots.get(region, ()):
                log.info("Deleting snapshot %s in %s" % (snapshotId, region))
                try:
                    ec2.delete_snapshot(SnapshotId=snapshotId)
                except Exception as e:
                    errors.append("%s: %s" % (snapshotId, e))
        if errors:
            raise RuntimeError("Error destroying EBS artifacts: %s" % "; ".join(errors))
