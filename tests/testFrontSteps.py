import os
import unittest
from mock import MagicMock, patch

from botocore.exceptions import ClientError

from buildObjects import RunContext, StateBag
from awscommon.polling import PollingConfig
from awscommon.runConfig import SourceAmiFilter
from buildsteps.connect import StepConnect
from buildsteps.iamInstanceProfile import StepIamInstanceProfile
from buildsteps.interface import Action
from buildsteps.keyPair import StepKeyPair
from buildsteps.networkInfo import StepNetworkInfo
from buildsteps.securityGroup import StepSecurityGroup
from buildsteps.sourceAmiInfo import StepSourceAmiInfo


def newState():
    state = StateBag()
    state.put("ec2", MagicMock())
    state.put("iam", MagicMock())
    state.put("ui", MagicMock())
    state.put("region", "us-east-1")
    return state


class TestSourceAmiInfo(unittest.TestCase):
    def setUp(self):
        self.state = newState()
        self.ec2 = self.state.get("ec2")

    def test_mostRecent(self):
        self.ec2.describe_images.return_value = {"Images": [
            {"ImageId": "ami-old", "CreationDate": "2023-01-01T00:00:00.000Z"},
            {"ImageId": "ami-new", "CreationDate": "2024-01-01T00:00:00.000Z"},
        ]}
        step = StepSourceAmiInfo(amiFilter=SourceAmiFilter(
            filters={"name": "ubuntu/*"}, owners=["099720109477"], mostRecent=True
        ))
        self.assertEqual(step.run(RunContext(), self.state), Action.CONTINUE)
        self.assertEqual(self.state.get("source_image")["ImageId"], "ami-new")
        self.ec2.describe_images.assert_called_once_with(
            Filters=[{"Name": "name", "Values": ["ubuntu/*"]}], Owners=["099720109477"]
        )

    def test_publishesGeneratedData(self):
        self.ec2.describe_images.return_value = {"Images": [{
            "ImageId": "ami-src", "Name": "base", "OwnerId": "123456789012",
            "CreationDate": "2024-01-01T00:00:00.000Z",
        }]}
        step = StepSourceAmiInfo(sourceAmi="ami-src")
        self.assertEqual(step.run(RunContext(), self.state), Action.CONTINUE)
        self.assertEqual(self.state.get("generated_data"), {
            "BuildRegion": "us-east-1",
            "SourceAMI": "ami-src",
            "SourceAMIName": "base",
            "SourceAMIOwner": "123456789012",
            "SourceAMICreationDate": "2024-01-01T00:00:00.000Z",
        })

    def test_ambiguous(self):
        self.ec2.describe_images.return_value = {"Images": [{"ImageId": "a"}, {"ImageId": "b"}]}
        step = StepSourceAmiInfo(amiFilter=SourceAmiFilter(filters={"name": "x"}, owners=["self"]))
        self.assertEqual(step.run(RunContext(), self.state), Action.HALT)
        self.assertIn("more than one result", str(self.state.get("error")))

    def test_nothingFound(self):
        self.ec2.describe_images.return_value = {"Images": []}
        self.assertEqual(StepSourceAmiInfo(sourceAmi="ami-x").run(RunContext(), self.state), Action.HALT)

    def test_enhancedNetworkingNeedsHvm(self):
        self.ec2.describe_images.return_value = {"Images": [
            {"ImageId": "ami-pv", "VirtualizationType": "paravirtual"},
        ]}
        step = StepSourceAmiInfo(sourceAmi="ami-pv", enableAmiEnaSupport=True)
        self.assertEqual(step.run(RunContext(), self.state), Action.HALT)
        self.assertIn("not HVM", str(self.state.get("error")))


class TestNetworkInfo(unittest.TestCase):
    def setUp(self):
        self.state = newState()
        self.ec2 = self.state.get("ec2")

    def test_mostFreeSubnet(self):
        self.ec2.describe_subnets.side_effect = [
            {"Subnets": [
                {"SubnetId": "subnet-a", "AvailableIpAddressCount": 10},
                {"SubnetId": "subnet-b", "AvailableIpAddressCount": 200},
            ]},
            {"Subnets": [
                {"SubnetId": "subnet-b", "VpcId": "vpc-1", "AvailabilityZone": "us-east-1b"},
            ]},
        ]
        step = StepNetworkInfo(subnetFilter={"tag:Name": "build"}, mostFree=True)
        self.assertEqual(step.run(RunContext(), self.state), Action.CONTINUE)
        self.assertEqual(self.state.get("subnet_id"), "subnet-b")
        self.assertEqual(self.state.get("vpc_id"), "vpc-1")
        self.assertEqual(self.state.get("availability_zone"), "us-east-1b")

    def test_defaultVpc(self):
        self.assertEqual(StepNetworkInfo().run(RunContext(), self.state), Action.CONTINUE)
        self.assertEqual(self.state.get("subnet_id"), "")
        self.ec2.describe_subnets.assert_not_called()


class TestKeyPair(unittest.TestCase):
    def test_temporaryKeyPair(self):
        state = newState()
        ec2 = state.get("ec2")
        ec2.create_key_pair.return_value = {"KeyMaterial": "private key"}
        step = StepKeyPair(temporaryKeyPairName="packer_1")
        self.assertEqual(step.run(RunContext(), state), Action.CONTINUE)

        path = state.get("private_key_file")
        self.assertEqual(state.get("key_pair_name"), "packer_1")
        self.assertEqual(state.get("private_key"), "private key")
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o600)

        step.cleanup(state)
        self.assertFalse(os.path.exists(path))
        ec2.delete_key_pair.assert_called_once_with(KeyName="packer_1")

    def test_createFailure(self):
        state = newState()
        state.get("ec2").create_key_pair.side_effect = Exception("limit")
        step = StepKeyPair(temporaryKeyPairName="packer_1")
        self.assertEqual(step.run(RunContext(), state), Action.HALT)
        step.cleanup(state)
        state.get("ec2").delete_key_pair.assert_not_called()

    @patch("buildsteps.keyPair.writePrivateKey")
    def test_writeFailureRemovesKeyFile(self, write):
        write.side_effect = OSError("disk full")
        state = newState()
        state.get("ec2").create_key_pair.return_value = {"KeyMaterial": "private key"}
        step = StepKeyPair(temporaryKeyPairName="packer_1")
        self.assertEqual(step.run(RunContext(), state), Action.HALT)
        self.assertIn("disk full", str(state.get("error")))

        path = step.createdKeyFile
        self.assertTrue(os.path.exists(path))
        step.cleanup(state)
        self.assertFalse(os.path.exists(path))
        state.get("ec2").delete_key_pair.assert_called_once_with(KeyName="packer_1")


class TestSecurityGroup(unittest.TestCase):
    def test_existingGroups(self):
        state = newState()
        step = StepSecurityGroup(securityGroupIds=["sg-a"])
        self.assertEqual(step.run(RunContext(), state), Action.CONTINUE)
        self.assertEqual(state.get("security_group_ids"), ["sg-a"])
        step.cleanup(state)
        state.get("ec2").delete_security_group.assert_not_called()

    def test_temporaryGroup(self):
        state = newState()
        state.put("vpc_id", "vpc-1")
        ec2 = state.get("ec2")
        ec2.create_security_group.return_value = {"GroupId": "sg-1"}
        ec2.delete_security_group.side_effect = [
            ClientError({"Error": {"Code": "DependencyViolation", "Message": "in use"}},
                        "DeleteSecurityGroup"),
            None,
        ]
        step = StepSecurityGroup(sshPort=2222, sourceCidrs=["10.0.0.0/8"])
        self.assertEqual(step.run(RunContext(), state), Action.CONTINUE)

        params = ec2.create_security_group.call_args[1]
        self.assertTrue(params["GroupName"].startswith("packer_"))
        self.assertEqual(params["VpcId"], "vpc-1")
        ec2.authorize_security_group_ingress.assert_called_once_with(
            GroupId="sg-1",
            IpPermissions=[{
                "IpProtocol": "tcp", "FromPort": 2222, "ToPort": 2222,
                "IpRanges": [{"CidrIp": "10.0.0.0/8"}],
            }],
        )

        step.cleanup(state)
        self.assertEqual(ec2.delete_security_group.call_count, 2)


class TestIamInstanceProfile(unittest.TestCase):
    @patch("awscommon.polling.waitUntilInstanceProfileExists")
    def test_temporaryProfile(self, exists):
        state = newState()
        iam = state.get("iam")
        step = StepIamInstanceProfile(
            pollingConfig=PollingConfig(),
            policyDocument={"Version": "2012-10-17", "Statement": []},
        )
        self.assertEqual(step.run(RunContext(), state), Action.CONTINUE)
        name = state.get("iam_instance_profile")
        self.assertTrue(name.startswith("packer-"))
        iam.add_role_to_instance_profile.assert_called_once_with(
            InstanceProfileName=name, RoleName=name
        )
        exists.assert_called_once()

        step.cleanup(state)
        iam.remove_role_from_instance_profile.assert_called_once_with(
            InstanceProfileName=name, RoleName=name
        )
        iam.delete_role_policy.assert_called_once_with(RoleName=name, PolicyName=name)
        iam.delete_role.assert_called_once_with(RoleName=name)
        iam.delete_instance_profile.assert_called_once_with(InstanceProfileName=name)

    def test_partialCreation(self):
        state = newState()
        iam = state.get("iam")
        iam.create_role.side_effect = Exception("denied")
        step = StepIamInstanceProfile(pollingConfig=PollingConfig(), policyDocument={})
        self.assertEqual(step.run(RunContext(), state), Action.HALT)

        step.cleanup(state)
        iam.delete_role.assert_not_called()
        iam.delete_instance_profile.assert_called_once()

    def test_existingProfile(self):
        state = newState()
        step = StepIamInstanceProfile(pollingConfig=PollingConfig(), iamInstanceProfile="builder")
        self.assertEqual(step.run(RunContext(), state), Action.CONTINUE)
        self.assertEqual(state.get("iam_instance_profile"), "builder")
        step.cleanup(state)
        state.get("iam").delete_instance_profile.assert_not_called()


class TestConnect(unittest.TestCase):
    @patch("awscommon.communicator.SSHCommunicator.waitForConnection")
    def test_addressAssignedLate(self, wait):
        state = newState()
        state.put("instance_id", "i-1")
        state.put("instance_ip", "")
        state.put("private_key_file", "/tmp/key.pem")
        state.get("ec2").describe_instances.return_value = {
            "Reservations": [{"Instances": [{"InstanceId": "i-1", "PublicIpAddress": "198.51.100.7"}]}]
        }
        step = StepConnect(username="ec2-user")
        self.assertEqual(step.run(RunContext(), state), Action.CONTINUE)
        self.assertEqual(state.get("instance_ip"), "198.51.100.7")
        self.assertEqual(state.get("communicator").host, "198.51.100.7")
        wait.assert_called_once()

    @patch("awscommon.communicator.SSHCommunicator.waitForConnection")
    def test_sshTimeout(self, wait):
        wait.side_effect = TimeoutError("Timeout waiting for SSH")
        state = newState()
        state.put("instance_ip", "198.51.100.7")
        state.put("private_key_file", "/tmp/key.pem")
        self.assertEqual(StepConnect(username="ec2-user").run(RunContext(), state), Action.HALT)
        self.assertIn("Timeout waiting for SSH", str(state.get("error")))
        self.assertNotIn("communicator", state)


if __name__ == "__main__":
    unittest.main()
