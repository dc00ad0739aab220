#
# keyPair.py - The ssh key used to reach the build instance.
#
# Either an existing key pair with its private key file, a private key file
# alone (the image must already trust it), or a temporary key pair that is
# deleted again when the build ends.
#
import logging
import os
import tempfile
from dataclasses import dataclass, field

from buildObjects import RunContext, StateBag
from awscommon.communicator import writePrivateKey
from buildsteps.interface import Action, halt


@dataclass
class StepKeyPair(object):
    keyPairName: str = ""
    privateKeyFile: str = ""
    temporaryKeyPairName: str = ""
    keyType: str = "rsa"

    createdKeyName: str = field(default="", init=False)
    createdKeyFile: str = field(default="", init=False)

    def run(self, ctx: RunContext, state: StateBag) -> Action:
        ui = state.getExn("ui")

        if self.privateKeyFile:
            ui.say("Using existing SSH private key")
            try:
                with open(self.privateKeyFile, "r") as f:
                    state.put("private_key", f.read())
            except OSError as e:
                return halt(state, RuntimeError(
                    "Error loading configured private key file: %s" % e
                ))
            state.put("private_key_file", self.privateKeyFile)
            state.put("key_pair_name", self.keyPairName)
            return Action.CONTINUE

        ec2 = state.getExn("ec2")
        ui.say("Creating temporary keypair: %s" % self.temporaryKeyPairName)
        try:
            resp = ec2.create_key_pair(KeyName=self.temporaryKeyPairName, KeyType=self.keyType)
        except Exception as e:
            return halt(state, RuntimeError("Error creating temporary keypair: %s" % e))
        self.createdKeyName = self.temporaryKeyPairName

        fd, path = tempfile.mkstemp(prefix="%s-" % self.temporaryKeyPairName, suffix=".pem")
        os.close(fd)
        self.createdKeyFile = path
        try:
            writePrivateKey(path, resp["KeyMaterial"])
        except OSError as e:
            return halt(state, RuntimeError("Error saving temporary key: %s" % e))

        state.put("key_pair_name", self.createdKeyName)
        state.put("private_key", resp["KeyMaterial"])
        state.put("private_key_file", path)
        return Action.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        ui = state.get("ui")
        if self.createdKeyFile:
            try:
                os.remove(self.createdKeyFile)
            except OSError as e:
                logging.getLogger("StepKeyPair").warning(
                    "Error removing temporary key file %s: %s" % (self.createdKeyFile, e)
                )
        if self.createdKeyName:
            if ui is not None:
                ui.say("Deleting temporary keypair...")
            state.getExn("ec2").delete_key_pair(KeyName=self.createdKeyName)
