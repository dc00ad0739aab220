#
# deregisterAmi.py - Remove existing AMIs with the target name before building.
#
from dataclasses import dataclass, field
from typing import List

from buildObjects import RunContext, StateBag
from awscommon.artifact import destroyAmis
from buildsteps.interface import Action, halt


@dataclass
class StepDeregisterAmi(object):
    amiName: str
    forceDeregister: bool = False
    forceDeleteSnapshot: bool = False
    regions: List[str] = field(default_factory=list)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        if not self.forceDeregister:
            return Action.CONTINUE

        ui = state.getExn("ui")
        clientFactory = state.getExn("client_factory")
        name = self.amiName

        regions = [state.getExn("region", str)] + [
            r for r in self.regions if r != state.get("region")
        ]
        for region in regions:
            ec2 = clientFactory(region)
            try:
                resp = ec2.describe_images(
                    Owners=["self"], Filters=[{"Name": "name", "Values": [name]}]
                )
            except Exception as e:
                return halt(state, RuntimeError("Error describing AMI: %s" % e))

            imageIds = [image["ImageId"] for image in resp.get("Images", [])]
            for imageId in imageIds:
                ui.say("Deregistered AMI %s, id: %s" % (name, imageId))
            try:
                deleted = destroyAmis(ec2, imageIds, deleteSnapshots=self.forceDeleteSnapshot)
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error deregistering existing AMI in %s: %s" % (region, e)
                ))
            for snapshotId in deleted:
                ui.say("Deleted snapshot: %s" % snapshotId)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
