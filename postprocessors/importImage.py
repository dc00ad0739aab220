#
# importImage.py - Turn a disk image produced by another builder into an AMI
# with the EC2 VM Import service.
#
# The image is uploaded to S3, imported, optionally renamed (a copy under the
# requested name replaces the import's own AMI), tagged and given its launch
# permissions. The uploaded object is deleted afterwards unless skipClean.
#
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from mypy_boto3_s3 import S3Client

from buildObjects import BuildCancelled, RunContext
from awscommon import polling
from awscommon.accessConfig import AccessConfig
from awscommon.amiConfig import validateAmiName, validateImdsSupport, validateKmsKey
from awscommon.artifact import Artifact, destroyAmis, imageSnapshotIds
from awscommon.errors import ConfigError, MultiError
from awscommon.imageAttributes import applyImageAttributes, buildImageAttributeModifications
from awscommon.polling import PollingConfig
from awscommon.retry import Backoff, RetryConfig
from awscommon.template import ec2Tags, renderTags, renderTemplate, validateTemplate

BUILDER_ID = "packer.post-processor.amazon-import"

FORMATS = ("ova", "raw", "vmdk", "vhd", "vhdx")
PLATFORMS = ("linux", "windows")
BOOT_MODES = ("legacy-bios", "uefi")
S3_ENCRYPTIONS = ("AES256", "aws:kms")
GENERATED_DATA_NAMES = (
    "BuildRegion", "SourceAMI", "SourceAMIName", "SourceAMIOwner", "SourceAMICreationDate",
)


@dataclass
class ImportConfig(object):
    access: AccessConfig = field(default_factory=AccessConfig)
    s3Bucket: str = ""
    s3Key: str = ""
    s3Encryption: str = ""
    s3EncryptionKey: str = ""
    skipClean: bool = False
    tags: Dict[str, str] = field(default_factory=dict)
    name: str = ""
    description: str = ""
    users: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    orgArns: List[str] = field(default_factory=list)
    ouArns: List[str] = field(default_factory=list)
    encrypt: bool = False
    kmsKey: str = ""
    imdsSupport: str = ""
    licenseType: str = ""
    roleName: str = ""
    format: str = ""
    architecture: str = ""
    bootMode: str = ""
    platform: str = ""
    pollingConfig: PollingConfig = field(default_factory=PollingConfig)


class UploadProgress(object):
    """Reports upload progress in steps of ten percent"""

    def __init__(self, ui, source, total):
        self.ui = ui
        self.source = source
        self.total = total
        self.sent = 0
        self.reported = 0

    def __call__(self, sent):
        self.sent += sent
        if not self.total:
            return
        percent = int(self.sent * 100 / self.total) // 10 * 10
        if percent > self.reported:
            self.reported = percent
            self.ui.message("Uploading %s: %d%%" % (self.source, percent))


class PostProcessor(object):
    def __init__(self, config: ImportConfig):
        self.config = config
        self.log = logging.getLogger("ImportPostProcessor")

    def configure(self) -> None:
        """configure - Fill in defaults and validate. Raises a MultiError
        listing every problem.
        """
        c = self.config
        errs = MultiError()

        if not c.format:
            c.format = "ova"
        if not c.s3Key:
            c.s3Key = "packer-import-{{ timestamp }}." + c.format
        if not c.architecture:
            c.architecture = "x86_64"
        if not c.bootMode:
            c.bootMode = "uefi" if c.architecture == "arm64" else "legacy-bios"

        err = validateTemplate(c.s3Key, GENERATED_DATA_NAMES)
        if err is not None:
            errs.append(ConfigError("Error parsing s3_key_name template: %s" % err))

        errs.append(*c.access.prepare())

        if not c.s3Bucket:
            errs.append(ConfigError("s3_bucket_name must be set"))

        if c.format not in FORMATS:
            errs.append(ConfigError(
                "invalid format '%s'. Only 'ova', 'raw', 'vhd', 'vhdx', or 'vmdk' are allowed"
                % c.format
            ))

        if c.platform == "":
            if c.bootMode == "uefi":
                errs.append(ConfigError(
                    "invalid platform '', 'platform' must be set for 'uefi' image imports"
                ))
        elif c.platform not in PLATFORMS:
            errs.append(ConfigError(
                "invalid platform '%s'. Only 'linux' and 'windows' are allowed" % c.platform
            ))

        if c.s3Encryption and c.s3Encryption not in S3_ENCRYPTIONS:
            errs.append(ConfigError(
                "invalid s3 encryption format '%s'. Only 'AES256' and 'aws:kms' are allowed"
                % c.s3Encryption
            ))

        if c.bootMode not in BOOT_MODES:
            errs.append(ConfigError(
                "invalid boot mode '%s'. Only 'uefi' and 'legacy-bios' are allowed" % c.bootMode
            ))
        if c.architecture == "arm64" and c.bootMode != "uefi":
            errs.append(ConfigError(
                "invalid boot mode '%s' for 'arm64' architecture" % c.bootMode
            ))

        imdsErr = validateImdsSupport(c.imdsSupport)
        if imdsErr is not None:
            errs.append(imdsErr)

        for key, value in sorted(c.tags.items()):
            for text in (key, value):
                err = validateTemplate(text, GENERATED_DATA_NAMES)
                if err is not None:
                    errs.append(ConfigError("Error parsing tag template: %s" % err))

        if c.name:
            try:
                c.name = renderTemplate(c.name)
            except ConfigError as e:
                errs.append(e)
            else:
                errs.append(*validateAmiName(c.name))
        if c.kmsKey and not validateKmsKey(c.kmsKey):
            errs.append(ConfigError("%r is not a valid KMS Key Id." % c.kmsKey))

        if errs:
            raise errs

        c.pollingConfig.logEnvOverrideWarnings()

    def findSource(self, artifact) -> str:
        suffix = "." + self.config.format
        for path in artifact.files():
            if path.endswith(suffix):
                return path
        raise RuntimeError(
            "No %s image file found in artifact from builder" % self.config.format
        )

    def upload(self, s3: S3Client, ui, source: str, key: str) -> None:
        c = self.config
        if c.s3Encryption == "AES256" and c.s3EncryptionKey:
            ui.message(
                "Ignoring s3_encryption_key because s3_encryption is set to '%s'" % c.s3Encryption
            )
        extra = {}
        if c.s3Encryption:
            extra["ServerSideEncryption"] = c.s3Encryption
            if c.s3Encryption == "aws:kms" and c.s3EncryptionKey:
                extra["SSEKMSKeyId"] = c.s3EncryptionKey

        ui.message("Uploading %s to s3://%s/%s" % (source, c.s3Bucket, key))
        try:
            total = os.path.getsize(source)
            s3.upload_file(
                source, c.s3Bucket, key,
                ExtraArgs=extra or None,
                Callback=UploadProgress(ui, source, total),
            )
        except Exception as e:
            raise RuntimeError("Failed to upload %s: %s" % (source, e)) from e
        ui.message("Completed upload of %s to s3://%s/%s" % (source, c.s3Bucket, key))

    def importParams(self, key: str) -> dict:
        c = self.config
        params = {
            "Encrypted": c.encrypt,
            "DiskContainers": [{
                "Format": c.format,
                "UserBucket": {"S3Bucket": c.s3Bucket, "S3Key": key},
            }],
            "Architecture": c.architecture,
            "BootMode": c.bootMode,
        }
        if c.platform:
            params["Platform"] = c.platform
        if c.encrypt and c.kmsKey:
            params["KmsKeyId"] = c.kmsKey
        if c.roleName:
            params["RoleName"] = c.roleName
        if c.licenseType:
            params["LicenseType"] = c.licenseType
        return params

    def waitForImport(self, ctx, ec2, taskId) -> str:
        """waitForImport - Wait for the task and return the imported AMI id.
        A failed import is reported with the task's own status message.
        """
        try:
            task = polling.waitUntilImageImported(ctx, ec2, taskId, self.config.pollingConfig)
        except BuildCancelled:
            raise
        except Exception as e:
            statusMessage = "Error retrieving status message"
            try:
                resp = ec2.describe_import_image_tasks(ImportTaskIds=[taskId])
                statusMessage = resp["ImportImageTasks"][0].get("StatusMessage", "")
            except Exception as describeErr:
                self.log.warning("Error describing import task %s: %s" % (taskId, describeErr))
            raise RuntimeError(
                "Import task %s failed with status message: %s, error: %s"
                % (taskId, statusMessage, e)
            ) from e
        return task["ImageId"]

    def rename(self, ctx, ec2, ui, region, imageId) -> str:
        c = self.config
        ui.message("Starting rename of AMI (%s)" % imageId)
        params = {"Name": c.name, "SourceImageId": imageId, "SourceRegion": region}
        if c.encrypt:
            params["Encrypted"] = True
            if c.kmsKey:
                params["KmsKeyId"] = c.kmsKey
        try:
            resp = ec2.copy_image(**params)
        except Exception as e:
            raise RuntimeError("Error Copying AMI (%s): %s" % (imageId, e)) from e

        ui.message("Waiting for AMI rename to complete (may take a while)")
        try:
            polling.waitUntilAmiAvailable(ctx, ec2, resp["ImageId"], c.pollingConfig)
        except BuildCancelled:
            raise
        except Exception as e:
            raise RuntimeError("Error waiting for AMI (%s): %s" % (resp["ImageId"], e)) from e

        ui.message("Destroying intermediary AMI...")
        try:
            destroyAmis(ec2, [imageId])
        except Exception as e:
            raise RuntimeError("Error deregistering existing AMI: %s" % e) from e
        ui.message("AMI rename completed")
        return resp["ImageId"]

    def tag(self, ec2, ui, imageId, tags) -> None:
        for key, value in sorted(tags.items()):
            ui.message("Adding tag \"%s\": \"%s\"" % (key, value))
        try:
            images = ec2.describe_images(ImageIds=[imageId]).get("Images", [])
        except Exception as e:
            raise RuntimeError("Failed to retrieve details for AMI %s: %s" % (imageId, e)) from e
        if not images:
            raise RuntimeError("AMI %s has no images" % imageId)

        resources = [imageId]
        for snapshotId in imageSnapshotIds(images[0]):
            ui.message("Tagging snapshot %s" % snapshotId)
            resources.append(snapshotId)
        ui.message("Tagging AMI %s" % imageId)
        try:
            ec2.create_tags(Resources=resources, Tags=ec2Tags(tags))
        except Exception as e:
            raise RuntimeError("Failed to add tags to resources %s: %s" % (resources, e)) from e

    def postProcess(self, ctx: Optional[RunContext], ui, artifact) -> Artifact:
        c = self.config
        if ctx is None:
            ctx = RunContext()
        ui.secretFilter.set(*c.access.secrets())

        generatedData = artifact.state("generated_data") or {}
        key = renderTemplate(c.s3Key, generatedData)
        self.log.info("Rendered s3_key_name as %s" % key)

        source = self.findSource(artifact)
        session = c.access.session()
        region = c.access.region
        s3 = session.client("s3")
        ec2 = session.client("ec2")

        self.upload(s3, ui, source, key)

        self.log.info("Calling EC2 to import from s3://%s/%s" % (c.s3Bucket, key))
        if c.licenseType:
            ui.message("Setting license type to '%s'" % c.licenseType)
        params = self.importParams(key)
        # A failed ImportImage call starts no task, so it is safe to repeat
        retry = RetryConfig(tries=11, retryDelay=Backoff(0.2, 30, 2))
        try:
            resp = retry.run(ctx, lambda _: ec2.import_image(**params), "import image")
        except BuildCancelled:
            raise
        except Exception as e:
            raise RuntimeError(
                "Failed to start import from s3://%s/%s: %s" % (c.s3Bucket, key, e)
            ) from e
        taskId = resp["ImportTaskId"]
        ui.message("Started import of s3://%s/%s, task id %s" % (c.s3Bucket, key, taskId))

        ui.message("Waiting for task %s to complete (may take a while)" % taskId)
        imageId = self.waitForImport(ctx, ec2, taskId)
        ui.message("Import task %s complete" % taskId)

        if c.name:
            imageId = self.rename(ctx, ec2, ui, region, imageId)

        if c.tags:
            self.tag(ec2, ui, imageId, renderTags(c.tags, generatedData))

        options = buildImageAttributeModifications(
            description=c.description,
            users=c.users,
            groups=c.groups,
            orgArns=c.orgArns,
            ouArns=c.ouArns,
            imdsSupport=c.imdsSupport,
        )
        applyImageAttributes(ec2, imageId, options, ui)

        self.log.info("Adding created AMI ID %s in region %s to output artifacts" % (imageId, region))
        result = Artifact(
            amis={region: imageId},
            builderId=BUILDER_ID,
            clientFactory=lambda r: c.access.session(r).client("ec2"),
        )

        if not c.skipClean:
            ui.message("Deleting import source s3://%s/%s" % (c.s3Bucket, key))
            try:
                s3.delete_object(Bucket=c.s3Bucket, Key=key)
            except Exception as e:
                raise RuntimeError(
                    "Failed to delete s3://%s/%s: %s" % (c.s3Bucket, key, e)
                ) from e

        return result
