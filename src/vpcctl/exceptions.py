"""vpcctl exception classes."""


class VpcctlError(Exception):
    """Base exception for vpcctl operations."""

    pass


class PrimitiveError(VpcctlError):
    """A single OS networking primitive failed."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed: {detail}")


class ResourceCreationError(VpcctlError):
    """An underlying resource (bridge, namespace, cable) could not be created."""

    def __init__(self, resource: str, message: str):
        self.resource = resource
        super().__init__(f"Could not create {resource}: {message}")


class DependencyMissingError(VpcctlError):
    """A referenced VPC or subnet does not exist."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} {name} does not exist. Create it first.")


class PolicyDocumentError(VpcctlError):
    """The security policy document is unreadable or malformed."""

    pass


class ProbeFailure(VpcctlError):
    """A connectivity probe did not succeed within its retry budget."""

    def __init__(self, source: str, target: str, attempts: int):
        self.source = source
        self.target = target
        self.attempts = attempts
        super().__init__(
            f"{source} could not reach {target} after {attempts} attempt(s)"
        )


class PolicyNotFoundWarning(UserWarning):
    """No security policy group exists for a subnet; it stays deny-by-default."""

    pass
