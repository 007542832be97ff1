from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes, one per failure site."""

    SUCCESS = 0
    CONFIGURATION = 100
    DIRECTORY_MODULE_LOAD = 101
    GRAPH_MODULE_LOAD = 102
    CREDENTIAL_READ = 110
    CREDENTIAL_BUILD = 120
    SERVICE_CONNECT = 130
    DIRECTORY_READ = 200
    IDENTITY_READ = 300
    USAGE_LOCATION_SET = 410
    LICENSE_ASSIGN = 420


class SyncAbort(Exception):
    """Base class for errors that end the run with a specific, non-zero exit code."""

    exit_code: ExitCode | None = None

    def __init__(self, message: str, exit_code: ExitCode | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code
        if not self.exit_code:
            raise TypeError(f"{type(self).__name__} needs a non-zero exit code")


class ConfigurationError(SyncAbort):
    exit_code = ExitCode.CONFIGURATION


class CredentialError(SyncAbort):
    exit_code = ExitCode.CREDENTIAL_READ


class DirectoryReadError(SyncAbort):
    exit_code = ExitCode.DIRECTORY_READ


class UsageLocationError(SyncAbort):
    exit_code = ExitCode.USAGE_LOCATION_SET


class LicenseAssignmentError(SyncAbort):
    exit_code = ExitCode.LICENSE_ASSIGN


class SkuResolutionError(SyncAbort):
    exit_code = ExitCode.SERVICE_CONNECT
