#
# securityGroup.py - Temporary security group allowing ssh into the instance.
#
import uuid
from dataclasses import dataclass, field
from typing import List

from botocore.exceptions import ClientError

from config import Config
from buildObjects import RunContext, StateBag
from awscommon.retry import Backoff, RetryConfig
from buildsteps.interface import Action, halt


def isDependencyViolation(e: Exception) -> bool:
    return (
        isinstance(e, ClientError)
        and e.response.get("Error", {}).get("Code") == "DependencyViolation"
    )


@dataclass
class StepSecurityGroup(object):
    securityGroupIds: List[str] = field(default_factory=list)
    sshPort: int = 22
    sourceCidrs: List[str] = field(default_factory=list)

    createdGroupId: str = field(default="", init=False)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ui = state.getExn("ui")

        if self.securityGroupIds:
            ui.say("Using existing security groups: %s" % ", ".join(self.securityGroupIds))
            state.put("security_group_ids", list(self.securityGroupIds))
            return Action.CONTINUE

        ec2 = state.getExn("ec2")
        groupName = "%s_%s" % (Config.PREFIX, uuid.uuid4())
        params = {"GroupName": groupName, "Description": Config.TEMP_SG_DESCRIPTION}
        if state.get("vpc_id"):
            params["VpcId"] = state.get("vpc_id")

        ui.say("Creating temporary security group for this instance: %s" % groupName)
        try:
            resp = ec2.create_security_group(**params)
        except Exception as e:
            return halt(state, RuntimeError("Error creating temporary security group: %s" % e))
        self.createdGroupId = resp["GroupId"]

        cidrs = self.sourceCidrs or ["0.0.0.0/0"]
        ui.say(
            "Authorizing access to port %d from %s in the temporary security groups..."
            % (self.sshPort, cidrs)
        )
        permission = {
            "IpProtocol": "tcp",
            "FromPort": self.sshPort,
            "ToPort": self.sshPort,
            "IpRanges": [{"CidrIp": cidr} for cidr in cidrs],
        }
        # A freshly created group is not always visible to the next call
        retry = RetryConfig(tries=11, retryDelay=Backoff(0.2, 30, 2))
        try:
            retry.run(
                ctx,
                lambda _: ec2.authorize_security_group_ingress(
                    GroupId=self.createdGroupId, IpPermissions=[permission]
                ),
                "authorize ingress on %s" % self.createdGroupId,
            )
        except Exception as e:
            return halt(state, RuntimeError(
                "Error authorizing temporary security group %s: %s" % (self.createdGroupId, e)
            ))

        state.put("security_group_ids", [self.createdGroupId])
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not self.createdGroupId:
            return
        ec2 = state.getExn("ec2")
        ui = state.get("ui")
        if ui is not None:
            ui.say("Deleting temporary security group...")
        # The group stays in use until the instance network interface is gone
        retry = RetryConfig(
            tries=30, retryDelay=Backoff(1, 10, 2), shouldRetry=isDependencyViolation
        )
        retry.run(
            RunContext(),
            lambda _: ec2.delete_security_group(GroupId=self.createdGroupId),
            "delete security group %s" % self.createdGroupId,
        )
