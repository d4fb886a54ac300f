# sharing_detector/exceptions.py


class SharingDetectionError(Exception):
    """Base class for all sharing detector errors"""


class UnknownNAS(SharingDetectionError):
    """Raised when a NAS id is not present in the configuration"""
    def __init__(self, nas_id):
        self.nas_id = nas_id
        super().__init__(f"NAS {nas_id} is not configured")


class UnreachableNAS(SharingDetectionError):
    """
    Network or authentication failure while talking to a router.

    Carries the NAS identity so callers can report which device failed.
    """
    def __init__(self, nas_id, nas_name, reason):
        self.nas_id = nas_id
        self.nas_name = nas_name
        self.reason = str(reason)
        super().__init__(f"NAS {nas_name} ({nas_id}) unreachable: {self.reason}")

    def to_dict(self):
        return {
            'nas_id': self.nas_id,
            'nas_name': self.nas_name,
            'error': self.reason
        }


class PartialRuleApplication(SharingDetectionError):
    """Fewer than the expected number of marking rules are present after provisioning"""
    def __init__(self, result):
        self.result = result
        super().__init__(
            f"Only {result.rule_count} of {result.expected_count} TTL rules present on "
            f"{result.nas_name} ({result.nas_id})"
        )


class ScanAlreadyRunning(SharingDetectionError):
    """A scan trigger arrived while another scan is in progress"""
    def __init__(self, running_type=None):
        self.running_type = running_type
        super().__init__("scan already in progress")


class InvalidSettings(SharingDetectionError):
    """Rejected settings update; `errors` maps field name to message"""
    def __init__(self, errors):
        self.errors = dict(errors)
        details = ', '.join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(f"Invalid settings ({details})")
