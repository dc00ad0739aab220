#
# imageAttributes.py - Launch permissions and other attributes of a finished AMI.
#
# Each attribute is a separate ModifyImageAttribute call. EC2 commits every
# call on its own, so a failure leaves the attributes applied before it in
# place.
#
from typing import Dict, List, Optional

from mypy_boto3_ec2 import EC2Client


def buildImageAttributeModifications(
    description: str = "",
    users: Optional[List[str]] = None,
    groups: Optional[List[str]] = None,
    orgArns: Optional[List[str]] = None,
    ouArns: Optional[List[str]] = None,
    imdsSupport: str = "",
) -> Dict[str, dict]:
    """buildImageAttributeModifications - One ModifyImageAttribute request per
    attribute that is actually set, keyed by a name used in progress messages.
    The ImageId is filled in when the requests are applied.
    """
    options: Dict[str, dict] = {}

    if description:
        options["description"] = {"Description": {"Value": description}}

    if groups:
        options["groups"] = {
            "UserGroups": list(groups),
            "LaunchPermission": {"Add": [{"Group": g} for g in groups]},
        }

    if users:
        options["users"] = {
            "UserIds": list(users),
            "LaunchPermission": {"Add": [{"UserId": u} for u in users]},
        }

    if orgArns:
        options["ami org arns"] = {
            "OrganizationArns": list(orgArns),
            "LaunchPermission": {"Add": [{"OrganizationArn": a} for a in orgArns]},
        }

    if ouArns:
        options["ami ou arns"] = {
            "OrganizationalUnitArns": list(ouArns),
            "LaunchPermission": {"Add": [{"OrganizationalUnitArn": a} for a in ouArns]},
        }

    if imdsSupport:
        options["ami imds support"] = {"ImdsSupport": {"Value": imdsSupport}}

    return options


def applyImageAttributes(ec2: EC2Client, imageId: str, options: Dict[str, dict], ui=None):
    for name, request in options.items():
        if ui is not None:
            ui.message("Modifying: %s" % name)
        try:
            ec2.modify_image_attribute(ImageId=imageId, **request)
        except Exception as e:
            raise RuntimeError(
                "Error modifying AMI attributes (%s) of %s: %s" % (name, imageId, e)
            ) from e
