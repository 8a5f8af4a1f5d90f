class SafetySecretaryError(Exception):
    """Base exception for SafetySecretary errors."""
    pass

class TenantUnavailableError(SafetySecretaryError):
    def __init__(self, org_id=None, reason=None):
        if reason:
            super().__init__(f"Tenant database is unusable: {reason}")
        elif org_id:
            super().__init__(f"Tenant {org_id} has no usable database connection")
        else:
            super().__init__("No tenant connection reference was provided")

class NotFoundError(SafetySecretaryError):
    pass

class CaseNotFoundError(NotFoundError):
    def __init__(self, case_id, kind: str = "Case"):
        self.case_id = case_id
        super().__init__(f"{kind} {case_id} not found")

class AccountNotFoundError(NotFoundError):
    def __init__(self, account_id, case_id):
        super().__init__(f"Account {account_id} not found on incident case {case_id}")

class InvalidJobStateError(SafetySecretaryError):
    def __init__(self, current_status, target_status):
        super().__init__(f"Cannot transition from {current_status} to {target_status}")

class ExtractionError(SafetySecretaryError):
    """The extraction collaborator failed or answered with something unusable."""
    pass

class JobTimeoutError(SafetySecretaryError):
    def __init__(self, timeout_seconds):
        super().__init__(f"Job timed out after {timeout_seconds:g} seconds")
