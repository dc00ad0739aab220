#
# amiAttributes.py - Finishing touches on every AMI of the build: launch
# permissions, product codes, snapshot sharing, deregistration protection,
# deprecation and tags.
#
# Every step walks the amis map (region => AMI id) so the copies get the same
# treatment as the build region image.
#
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

from buildObjects import BuildCancelled, RunContext, StateBag
from awscommon.amiConfig import DeregistrationProtection
from awscommon.imageAttributes import applyImageAttributes, buildImageAttributeModifications
from awscommon.retry import Backoff, RetryConfig
from awscommon.template import ec2Tags, renderTags, renderTemplate
from buildsteps.interface import Action, halt


def regionImages(state: StateBag):
    return sorted(state.getExn("amis", dict).items())


@dataclass
class StepModifyAmiAttributes(object):
    description: str = ""
    users: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    orgArns: List[str] = field(default_factory=list)
    ouArns: List[str] = field(default_factory=list)
    productCodes: List[str] = field(default_factory=list)
    imdsSupport: str = ""
    snapshotUsers: List[str] = field(default_factory=list)
    snapshotGroups: List[str] = field(default_factory=list)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ui = state.getExn("ui")
        clientFactory = state.getExn("client_factory")
        snapshots = state.get("snapshots") or {}
        description = renderTemplate(self.description, state.get("generated_data"))

        options = buildImageAttributeModifications(
            description=description,
            users=self.users,
            groups=self.groups,
            orgArns=self.orgArns,
            ouArns=self.ouArns,
            imdsSupport=self.imdsSupport,
        )
        if self.productCodes:
            options["product codes"] = {"ProductCodes": list(self.productCodes)}

        snapshotPermission = {}
        if self.snapshotUsers:
            snapshotPermission["UserIds"] = list(self.snapshotUsers)
        if self.snapshotGroups:
            snapshotPermission["GroupNames"] = list(self.snapshotGroups)

        if not options and not snapshotPermission:
            return Action.CONTINUE

        for region, imageId in regionImages(state):
            ec2 = clientFactory(region)
            ui.say("Modifying attributes on AMI (%s)..." % imageId)
            try:
                applyImageAttributes(ec2, imageId, options, ui)
            except Exception as e:
                return halt(state, e)

            if not snapshotPermission:
                continue
            for snapshotId in snapshots.get(region, []):
                ui.say("Modifying attributes on snapshot (%s)..." % snapshotId)
                try:
                    ec2.modify_snapshot_attribute(
                        SnapshotId=snapshotId,
                        Attribute="createVolumePermission",
                        OperationType="add",
                        **snapshotPermission
                    )
                except Exception as e:
                    return halt(state, RuntimeError(
                        "Error modifying snapshot attributes of %s: %s" % (snapshotId, e)
                    ))
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass


@dataclass
class StepEnableDeregistrationProtection(object):
    protection: DeregistrationProtection = field(default_factory=DeregistrationProtection)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        if not self.protection.enabled:
            return Action.CONTINUE
        ui = state.getExn("ui")
        clientFactory = state.getExn("client_factory")
        for region, imageId in regionImages(state):
            ui.say("Enabling deregistration protection on AMI (%s) in %s..." % (imageId, region))
            try:
                clientFactory(region).enable_image_deregistration_protection(
                    ImageId=imageId, WithCooldown=self.protection.withCooldown
                )
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error enabling deregistration protection on %s: %s" % (imageId, e)
                ))
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass


@dataclass
class StepEnableDeprecation(object):
    # YYYY-MM-DDTHH:MM:SSZ
    deprecationTime: str = ""

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        if not self.deprecationTime:
            return Action.CONTINUE
        ui = state.getExn("ui")
        clientFactory = state.getExn("client_factory")
        deprecateAt = datetime.strptime(self.deprecationTime, "%Y-%m-%dT%H:%M:%SZ").replace(
            tzinfo=timezone.utc
        )
        for region, imageId in regionImages(state):
            ui.say("Enabling deprecation on AMI (%s) in %s..." % (imageId, region))
            try:
                clientFactory(region).enable_image_deprecation(
                    ImageId=imageId, DeprecateAt=deprecateAt
                )
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error enabling deprecation on %s: %s" % (imageId, e)
                ))
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass


@dataclass
class StepCreateTags(object):
    tags: Dict[str, str] = field(default_factory=dict)
    snapshotTags: Dict[str, str] = field(default_factory=dict)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        if not self.tags and not self.snapshotTags:
            return Action.CONTINUE
        ui = state.getExn("ui")
        clientFactory = state.getExn("client_factory")
        snapshots = state.get("snapshots") or {}
        data = state.get("generated_data") or {}

        amiTags = ec2Tags(renderTags(self.tags, data))
        snapshotTags = ec2Tags(renderTags(self.snapshotTags, data))
        # Fresh images and copies are not always visible to CreateTags yet
        retry = RetryConfig(tries=11, retryDelay=Backoff(0.2, 30, 2))

        for region, imageId in regionImages(state):
            ec2 = clientFactory(region)
            regionSnapshots = list(snapshots.get(region, []))
            try:
                if amiTags:
                    ui.say("Adding tags to AMI (%s)..." % imageId)
                    retry.run(
                        ctx,
                        lambda _: ec2.create_tags(Resources=[imageId], Tags=amiTags),
                        "tag AMI %s" % imageId,
                    )
                if regionSnapshots and (amiTags or snapshotTags):
                    ui.say("Tagging snapshots: %s" % ", ".join(regionSnapshots))
                    if amiTags:
                        retry.run(
                            ctx,
                            lambda _: ec2.create_tags(Resources=regionSnapshots, Tags=amiTags),
                            "tag snapshots of %s" % imageId,
                        )
                    if snapshotTags:
                        retry.run(
                            ctx,
                            lambda _: ec2.create_tags(Resources=regionSnapshots, Tags=snapshotTags),
                            "tag snapshots of %s" % imageId,
                        )
            except BuildCancelled:
                raise
            except Exception as e:
                return halt(state, RuntimeError(
                    "Error adding tags to resources of %s in %s: %s" % (imageId, region, e)
                ))
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
