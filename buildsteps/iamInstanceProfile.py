#
# iamInstanceProfile.py - Instance profile attached to the build instance.
#
# With a policy document a temporary role, inline policy and instance profile
# are created. IAM is eventually consistent: the profile is polled until it
# is visible with its role before the instance is launched with it.
#
import json
import uuid
from dataclasses import dataclass, field
from typing import Optional

from config import Config
from buildObjects import RunContext, StateBag
from awscommon import polling
from awscommon.polling import PollingConfig
from buildsteps.interface import Action, halt

EC2_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [{
        "Effect": "Allow",
        "Principal": {"Service": "ec2.amazonaws.com"},
        "Action": "sts:AssumeRole",
    }],
}


@dataclass
class StepIamInstanceProfile(object):
    pollingConfig: PollingConfig
    iamInstanceProfile: str = ""
    policyDocument: Optional[dict] = None

    createdProfileName: str = field(default="", init=False)
    createdRoleName: str = field(default="", init=False)
    createdPolicyName: str = field(default="", init=False)
    roleAdded: bool = field(default=False, init=False)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ui = state.getExn("ui")
        state.put("iam_instance_profile", "")

        if self.iamInstanceProfile:
            iam = state.getExn("iam")
            try:
                iam.get_instance_profile(InstanceProfileName=self.iamInstanceProfile)
            except Exception as e:
                return halt(state, RuntimeError(
                    "Couldn't find specified instance profile %s: %s"
                    % (self.iamInstanceProfile, e)
                ))
            ui.message("Using specified instance profile: %s" % self.iamInstanceProfile)
            state.put("iam_instance_profile", self.iamInstanceProfile)
            return Action.CONTINUE

        if self.policyDocument is None:
            return Action.CONTINUE

        iam = state.getExn("iam")
        name = "%s-%s" % (Config.PREFIX, uuid.uuid4())

        ui.say("Creating temporary instance profile for this instance: %s" % name)
        try:
            iam.create_instance_profile(InstanceProfileName=name)
        except Exception as e:
            return halt(state, RuntimeError("Error creating instance profile: %s" % e))
        self.createdProfileName = name

        ui.say("Creating temporary role for this instance: %s" % name)
        try:
            iam.create_role(
                RoleName=name,
                Description="Temporary role for the build instance",
                AssumeRolePolicyDocument=json.dumps(EC2_TRUST_POLICY),
            )
        except Exception as e:
            return halt(state, RuntimeError("Error creating temporary role: %s" % e))
        self.createdRoleName = name

        ui.say("Attaching policy to the temporary role: %s" % name)
        try:
            iam.put_role_policy(
                RoleName=name, PolicyName=name, PolicyDocument=json.dumps(self.policyDocument)
            )
        except Exception as e:
            return halt(state, RuntimeError("Error attaching policy to role: %s" % e))
        self.createdPolicyName = name

        try:
            iam.add_role_to_instance_profile(InstanceProfileName=name, RoleName=name)
        except Exception as e:
            return halt(state, RuntimeError("Error adding role to instance profile: %s" % e))
        self.roleAdded = True

        try:
            polling.waitUntilInstanceProfileExists(ctx, iam, name, self.pollingConfig)
        except Exception as e:
            return halt(state, RuntimeError(
                "Timed out waiting for instance profile %s: %s" % (name, e)
            ))

        state.put("iam_instance_profile", name)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        if not self.createdProfileName:
            return
        iam = state.getExn("iam")
        ui = state.get("ui")
        if ui is not None:
            ui.say("Deleting temporary instance profile...")
        if self.roleAdded:
            iam.remove_role_from_instance_profile(
                InstanceProfileName=self.createdProfileName, RoleName=self.createdRoleName
            )
        if self.createdPolicyName:
            iam.delete_role_policy(RoleName=self.createdRoleName, PolicyName=self.createdPolicyName)
        if self.createdRoleName:
            iam.delete_role(RoleName=self.createdRoleName)
        iam.delete_instance_profile(InstanceProfileName=self.createdProfileName)
