#
# accessConfig.py - Credentials and region used to talk to AWS.
#
import logging
from dataclasses import dataclass
from typing import List, Optional

import boto3

from awscommon.errors import ConfigError

# suppress most boto logging
logging.getLogger("boto3").setLevel(logging.CRITICAL)
logging.getLogger("botocore").setLevel(logging.CRITICAL)
logging.getLogger("urllib3.connectionpool").setLevel(logging.CRITICAL)


@dataclass
class AccessConfig(object):
    region: str = ""
    accessKey: str = ""
    secretKey: str = ""
    token: str = ""
    profile: str = ""

    def prepare(self) -> List[Exception]:
        errs: List[Exception] = []
        if not self.region:
            errs.append(ConfigError("region must be specified"))
        if bool(self.accessKey) != bool(self.secretKey):
            errs.append(
                ConfigError("access_key and secret_key must both be set or both be empty")
            )
        return errs

    def secrets(self) -> List[str]:
        return [s for s in (self.accessKey, self.secretKey, self.token) if s]

    def session(self, region: Optional[str] = None) -> boto3.session.Session:
        kwargs = {"region_name": region or self.region}
        if self.accessKey:
            kwargs["aws_access_key_id"] = self.accessKey
            kwargs["aws_secret_access_key"] = self.secretKey
            if self.token:
                kwargs["aws_session_token"] = self.token
        if self.profile:
            kwargs["profile_name"] = self.profile
        return boto3.session.Session(**kwargs)
