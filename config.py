#
# config.py - Process-wide constants for the AMI and EBS volume builders.
#
# Per-build settings live in the dataclasses under awscommon/; this file only
# holds the knobs shared by every build running in this process.
#


class Config(object):
    #####
    # Part 1: Naming
    #
    # Prefix for every temporary resource (key pairs, security groups,
    # instance profiles) a build creates
    PREFIX = "packer"

    # Description placed on temporary security groups
    TEMP_SG_DESCRIPTION = "Temporary group for Packer"

    #####
    # Part 2: Timing
    #
    # Seconds between checks when waiting for a local process
    TIMER_POLL_INTERVAL = 1

    # Seconds to wait for the communicator to accept connections
    SSH_TIMEOUT = 300

    # Seconds between communicator connection attempts
    SSH_RETRY_INTERVAL = 5

    # Seconds a single provisioning command may run
    PROVISION_TIMEOUT = 3600

    # Default waiter settings, used when neither the build config nor the
    # AWS_* environment variables override them
    WAITER_MAX_ATTEMPTS = 40
    WAITER_DELAY_SECONDS = 15

    # Import tasks take much longer than other operations
    IMPORT_WAITER_MAX_ATTEMPTS = 720
    IMPORT_WAITER_DELAY_SECONDS = 5

    #####
    # Part 3: Communicator
    #
    SSH_FLAGS = [
        "-o",
        "StrictHostKeyChecking no",
        "-o",
        "UserKnownHostsFile /dev/null",
        "-o",
        "GSSAPIAuthentication no",
        "-o",
        "ConnectTimeout 10",
    ]
