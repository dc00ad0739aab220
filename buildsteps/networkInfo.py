#
# networkInfo.py - Work out the VPC, subnet and availability zone to launch in.
#
from dataclasses import dataclass, field
from typing import Dict

from buildObjects import RunContext, StateBag
from buildsteps.interface import Action, halt


def mostFreeSubnet(subnets):
    """mostFreeSubnet - The subnet with the most free addresses"""
    return sorted(subnets, key=lambda s: s.get("AvailableIpAddressCount", 0))[-1]


@dataclass
class StepNetworkInfo(object):
    vpcId: str = ""
    subnetId: str = ""
    availabilityZone: str = ""
    vpcFilter: Dict[str, str] = field(default_factory=dict)
    subnetFilter: Dict[str, str] = field(default_factory=dict)
    mostFree: bool = False

    def filters(self, values):
        return [{"Name": k, "Values": [v]} for k, v in sorted(values.items())]

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ec2 = state.getExn("ec2")
        ui = state.getExn("ui")

        vpcId = self.vpcId
        if not vpcId and self.vpcFilter:
            ui.say("Using VPC filters to find a VPC...")
            try:
                vpcs = ec2.describe_vpcs(Filters=self.filters(self.vpcFilter)).get("Vpcs", [])
            except Exception as e:
                return halt(state, RuntimeError("Error querying VPCs: %s" % e))
            if len(vpcs) != 1:
                return halt(state, RuntimeError(
                    "Exactly one VPC should match the filter, but %d VPCs did" % len(vpcs)
                ))
            vpcId = vpcs[0]["VpcId"]
            ui.message("Found VPC ID: %s" % vpcId)

        subnetId = self.subnetId
        availabilityZone = self.availabilityZone
        if not subnetId and self.subnetFilter:
            ui.say("Using subnet filters to find a subnet...")
            filters = dict(self.subnetFilter)
            if vpcId:
                filters["vpc-id"] = vpcId
            if availabilityZone:
                filters["availability-zone"] = availabilityZone
            try:
                subnets = ec2.describe_subnets(Filters=self.filters(filters)).get("Subnets", [])
            except Exception as e:
                return halt(state, RuntimeError("Error querying subnets: %s" % e))
            if not subnets:
                return halt(state, RuntimeError("No subnets found matching filters"))
            if len(subnets) > 1 and not self.mostFree:
                return halt(state, RuntimeError(
                    "Your filter matched %d Subnets. Please try a more specific "
                    "search, or set random or most_free to true." % len(subnets)
                ))
            subnet = mostFreeSubnet(subnets)
            subnetId = subnet["SubnetId"]
            ui.message("Found Subnet ID: %s" % subnetId)

        if subnetId:
            try:
                subnets = ec2.describe_subnets(SubnetIds=[subnetId]).get("Subnets", [])
            except Exception as e:
                return halt(state, RuntimeError("Error describing subnet %s: %s" % (subnetId, e)))
            if not subnets:
                return halt(state, RuntimeError("Subnet %s not found" % subnetId))
            # The subnet decides both; explicit values would only conflict
            vpcId = subnets[0]["VpcId"]
            availabilityZone = subnets[0]["AvailabilityZone"]
            ui.message("AvailabilityZone found: %s" % availabilityZone)

        state.put("vpc_id", vpcId)
        state.put("subnet_id", subnetId)
        state.put("availability_zone", availabilityZone)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
