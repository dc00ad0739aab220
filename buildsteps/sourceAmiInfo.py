#
# sourceAmiInfo.py - Find the AMI the build instance is launched from.
#
from dataclasses import dataclass, field
from typing import Optional

from buildObjects import RunContext, StateBag
from awscommon.runConfig import SourceAmiFilter
from buildsteps.interface import Action, halt


def mostRecentImage(images):
    return sorted(images, key=lambda image: image.get("CreationDate", ""))[-1]


def publishGeneratedData(state: StateBag, image: dict) -> dict:
    """publishGeneratedData - Fill the template values known once the source
    AMI is found, and return the generated_data map.
    """
    data = state.get("generated_data")
    if data is None:
        data = {}
        state.put("generated_data", data)
    data.update({
        "BuildRegion": state.get("region", ""),
        "SourceAMI": image.get("ImageId", ""),
        "SourceAMIName": image.get("Name", ""),
        "SourceAMIOwner": image.get("OwnerId", ""),
        "SourceAMICreationDate": image.get("CreationDate", ""),
    })
    return data


@dataclass
class StepSourceAmiInfo(object):
    sourceAmi: str = ""
    amiFilter: SourceAmiFilter = field(default_factory=SourceAmiFilter)
    enableAmiSriovNetSupport: bool = False
    enableAmiEnaSupport: Optional[bool] = None

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")

        params: dict = {}
        if self.sourceAmi:
            params["ImageIds"] = [self.sourceAmi]
        if self.amiFilter.filters:
            params["Filters"] = [
                {"Name": name, "Values": [value]}
                for name, value in sorted(self.amiFilter.filters.items())
            ]
        if self.amiFilter.owners:
            params["Owners"] = list(self.amiFilter.owners)

        ui.say("Inspecting the source AMI...")
        try:
            images = ec2.describe_images(**params).get("Images", [])
        except Exception as e:
            return halt(state, RuntimeError("Error querying AMI: %s" % e))

        if not images:
            return halt(state, RuntimeError(
                "No AMI was found matching filters: %s" % params
            ))
        if len(images) > 1 and not self.amiFilter.mostRecent:
            return halt(state, RuntimeError(
                "Your query returned more than one result. Please try a more "
                "specific search, or set most_recent to true."
            ))

        image = mostRecentImage(images)
        ui.message("Found Image ID: %s" % image["ImageId"])

        # Enhanced networking can only be enabled on HVM AMIs
        enhanced = self.enableAmiSriovNetSupport or self.enableAmiEnaSupport is True
        if enhanced and image.get("VirtualizationType") != "hvm":
            return halt(state, RuntimeError(
                "Cannot enable enhanced networking, source AMI '%s' is not HVM" % image["ImageId"]
            ))

        state.put("source_image", image)
        publishGeneratedData(state, image)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
