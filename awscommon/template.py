#
# template.py - Renders user supplied strings such as "my-ami-{{ timestamp }}".
#
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from jinja2 import Environment, StrictUndefined, TemplateError

from awscommon.errors import ConfigError

# Characters allowed in AMI names; everything else is replaced with "-"
_AMI_NAME_INVALID = re.compile(r"[^a-zA-Z0-9\(\)\[\] \./\-'@_]")


def cleanResourceName(name: str) -> str:
    return _AMI_NAME_INVALID.sub("-", name)


_environment = Environment(undefined=StrictUndefined, keep_trailing_newline=True)
_environment.filters["clean_resource_name"] = cleanResourceName


def builtins() -> dict:
    now = datetime.now(timezone.utc)
    return {
        "timestamp": str(int(time.time())),
        "isotime": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "uuid": str(uuid.uuid4()),
    }


def renderTemplate(text: str, data: Optional[Mapping[str, Any]] = None) -> str:
    """renderTemplate - Render text with the builtins and data. A variable that
    is neither a builtin nor in data is an error, not an empty string.
    """
    if not text or "{" not in text:
        return text
    values = builtins()
    if data:
        values.update(data)
    try:
        return _environment.from_string(text).render(**values)
    except TemplateError as e:
        raise ConfigError("error rendering %r: %s" % (text, e)) from e


def validateTemplate(text: str, names=()) -> Optional[Exception]:
    """validateTemplate - Check that text parses and only uses known names.
    Returns the problem instead of raising so config checks can collect it.
    """
    try:
        renderTemplate(text, {name: "" for name in names})
    except ConfigError as e:
        return e
    return None


def renderTags(tags: Mapping[str, str], data: Optional[Mapping[str, Any]] = None) -> dict:
    return {renderTemplate(k, data): renderTemplate(v, data) for k, v in (tags or {}).items()}


def ec2Tags(tags: Mapping[str, str]) -> list:
    return [{"Key": k, "Value": v} for k, v in sorted(tags.items())]
