import os
import tempfile
import unittest
from mock import MagicMock, patch

from botocore.exceptions import ClientError

from buildUi import BuildUi
from awscommon.accessConfig import AccessConfig
from awscommon.errors import MultiError, WaiterFailureError
from postprocessors.importImage import ImportConfig, PostProcessor, UploadProgress


class TestConfigure(unittest.TestCase):
    def test_defaults(self):
        config = ImportConfig(access=AccessConfig(region="us-east-1"), s3Bucket="images")
        PostProcessor(config).configure()
        self.assertEqual(config.format, "ova")
        self.assertEqual(config.s3Key, "packer-import-{{ timestamp }}.ova")
        self.assertEqual(config.architecture, "x86_64")
        self.assertEqual(config.bootMode, "legacy-bios")

    def test_arm64DefaultsToUefi(self):
        config = ImportConfig(
            access=AccessConfig(region="us-east-1"), s3Bucket="images",
            architecture="arm64", platform="linux",
        )
        PostProcessor(config).configure()
        self.assertEqual(config.bootMode, "uefi")

    def test_everyProblemReported(self):
        config = ImportConfig(
            access=AccessConfig(region="us-east-1"),
            format="iso",
            platform="mac",
            s3Encryption="foo",
            architecture="arm64",
            bootMode="legacy-bios",
            imdsSupport="v1",
            name="ab",
            kmsKey="not-a-key",
        )
        with self.assertRaises(MultiError) as cm:
            PostProcessor(config).configure()
        self.assertEqual(len(cm.exception.errors), 8)
        message = str(cm.exception)
        self.assertIn("s3_bucket_name must be set", message)
        self.assertIn("invalid format 'iso'", message)
        self.assertIn("for 'arm64' architecture", message)

    def test_templatedName(self):
        config = ImportConfig(
            access=AccessConfig(region="us-east-1"), s3Bucket="images",
            name="imported-{{ timestamp }}",
        )
        PostProcessor(config).configure()
        self.assertRegex(config.name, r"^imported-\d+$")

    def test_unknownTagVariable(self):
        config = ImportConfig(
            access=AccessConfig(region="us-east-1"), s3Bucket="images",
            tags={"Team": "{{ Owner }}"},
        )
        with self.assertRaises(MultiError) as cm:
            PostProcessor(config).configure()
        self.assertIn("Error parsing tag template", str(cm.exception))

    def test_uefiNeedsPlatform(self):
        config = ImportConfig(
            access=AccessConfig(region="us-east-1"), s3Bucket="images", bootMode="uefi"
        )
        with self.assertRaises(MultiError) as cm:
            PostProcessor(config).configure()
        self.assertIn("'platform' must be set", str(cm.exception))


class TestUploadProgress(unittest.TestCase):
    def test_tenPercentSteps(self):
        ui = MagicMock()
        progress = UploadProgress(ui, "disk.ova", 100)
        for _ in range(4):
            progress(5)
        progress(80)
        self.assertEqual(
            [c[0][0] for c in ui.message.call_args_list],
            ["Uploading disk.ova: 10%", "Uploading disk.ova: 20%", "Uploading disk.ova: 100%"],
        )


@patch("awscommon.polling.waitUntilAmiAvailable")
@patch("awscommon.polling.waitUntilImageImported")
class TestPostProcess(unittest.TestCase):
    def setUp(self):
        fd, self.source = tempfile.mkstemp(suffix=".ova")
        os.write(fd, b"disk image")
        os.close(fd)
        self.addCleanup(os.remove, self.source)

        self.s3 = MagicMock()
        self.ec2 = MagicMock()
        self.ec2.import_image.return_value = {"ImportTaskId": "import-ami-1"}
        self.ec2.copy_image.return_value = {"ImageId": "ami-renamed"}
        self.ec2.describe_images.return_value = {"Images": [{
            "ImageId": "ami-imported",
            "BlockDeviceMappings": [{"DeviceName": "/dev/sda1", "Ebs": {"SnapshotId": "snap-1"}}],
        }]}
        session = MagicMock()
        session.client.side_effect = lambda name: {"s3": self.s3, "ec2": self.ec2}[name]
        patcher = patch.object(AccessConfig, "session", return_value=session)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.artifact = MagicMock()
        self.artifact.files.return_value = ["/tmp/other.vmdk", self.source]
        self.artifact.state.return_value = {"SourceAMI": "ami-src"}

        self.config = ImportConfig(
            access=AccessConfig(region="us-east-1", accessKey="AKIAEXAMPLE", secretKey="s3cr3t"),
            s3Bucket="images",
            s3Key="imports/{{ SourceAMI }}.ova",
            name="imported-image",
            tags={"Team": "builds"},
            users=["123456789012"],
        )
        self.processor = PostProcessor(self.config)
        self.processor.configure()
        self.ui = BuildUi("test")
        self.addCleanup(self.ui.close)

    def test_import(self, imported, available):
        imported.return_value = {"ImageId": "ami-imported", "Status": "completed"}
        result = self.processor.postProcess(None, self.ui, self.artifact)

        self.assertEqual(dict(result.amis), {"us-east-1": "ami-renamed"})
        self.assertEqual(result.builderId, "packer.post-processor.amazon-import")

        args = self.s3.upload_file.call_args[0]
        self.assertEqual(args, (self.source, "images", "imports/ami-src.ova"))
        params = self.ec2.import_image.call_args[1]
        self.assertEqual(params["DiskContainers"][0]["UserBucket"],
                         {"S3Bucket": "images", "S3Key": "imports/ami-src.ova"})
        self.assertEqual(params["BootMode"], "legacy-bios")

        self.ec2.copy_image.assert_called_once_with(
            Name="imported-image", SourceImageId="ami-imported", SourceRegion="us-east-1"
        )
        self.ec2.deregister_image.assert_called_once_with(ImageId="ami-imported")
        self.ec2.create_tags.assert_called_once_with(
            Resources=["ami-renamed", "snap-1"], Tags=[{"Key": "Team", "Value": "builds"}]
        )
        self.ec2.modify_image_attribute.assert_called_once()
        self.s3.delete_object.assert_called_once_with(Bucket="images", Key="imports/ami-src.ova")
        self.assertIn("s3cr3t", self.ui.secretFilter.secrets)

    def test_templatedNameAndTags(self, imported, available):
        imported.return_value = {"ImageId": "ami-imported", "Status": "completed"}
        self.config.name = "imported-{{ timestamp }}"
        self.config.tags = {"Source": "{{ SourceAMI }}"}
        self.processor.configure()
        self.processor.postProcess(None, self.ui, self.artifact)

        name = self.ec2.copy_image.call_args[1]["Name"]
        self.assertRegex(name, r"^imported-\d+$")
        self.ec2.create_tags.assert_called_once_with(
            Resources=["ami-renamed", "snap-1"], Tags=[{"Key": "Source", "Value": "ami-src"}]
        )

    def test_importFailure(self, imported, available):
        imported.side_effect = WaiterFailureError("import task import-ami-1", "deleted", "")
        self.ec2.describe_import_image_tasks.return_value = {
            "ImportImageTasks": [{"StatusMessage": "ClientError: Unknown OS / Missing OS files."}]
        }
        with self.assertRaises(RuntimeError) as cm:
            self.processor.postProcess(None, self.ui, self.artifact)
        self.assertIn("import-ami-1", str(cm.exception))
        self.assertIn("Unknown OS", str(cm.exception))
        self.s3.delete_object.assert_not_called()
        self.ec2.copy_image.assert_not_called()

    def test_importStartIsRetried(self, imported, available):
        imported.return_value = {"ImageId": "ami-imported"}
        self.ec2.import_image.side_effect = [
            ClientError({"Error": {"Code": "Throttling", "Message": "slow down"}}, "ImportImage"),
            {"ImportTaskId": "import-ami-1"},
        ]
        self.config.skipClean = True
        self.processor.postProcess(None, self.ui, self.artifact)
        self.assertEqual(self.ec2.import_image.call_count, 2)
        self.s3.delete_object.assert_not_called()

    def test_missingSourceFile(self, imported, available):
        self.artifact.files.return_value = ["/tmp/disk.vmdk"]
        with self.assertRaises(RuntimeError) as cm:
            self.processor.postProcess(None, self.ui, self.artifact)
        self.assertIn("No ova image file", str(cm.exception))
        self.s3.upload_file.assert_not_called()


if __name__ == "__main__":
    unittest.main()
