"""Exception types raised by bundle keeper operations."""


class BundleKeeperError(Exception):
    """Base class for every error bundle keeper reports to its caller."""


class NotFoundError(BundleKeeperError):
    """A managed unit or snapshot does not exist."""


class UnitNotFound(NotFoundError):
    def __init__(self, name: str):
        super().__init__(f"Unit not found: {name}")
        self.name = name


class VersionNotFound(NotFoundError):
    def __init__(self, unit: str, pool: str, version: str):
        super().__init__(f"Version not found: {unit} {pool}/{version}")
        self.unit = unit
        self.pool = pool
        self.version = version


class InvalidSource(BundleKeeperError):
    """A source descriptor could not be parsed."""

    def __init__(self, text: str):
        super().__init__(
            f"Invalid source: {text!r} (use github:owner/repo, git:<url> or dir:<path>)"
        )
        self.text = text


class RetrievalError(BundleKeeperError):
    """Fetching a version from its source failed; nothing was registered."""


class ScanRejected(BundleKeeperError):
    """A fetched tree was rejected by the risk scanner."""

    def __init__(self, level: str, alerts: list[str]):
        super().__init__(f"Rejected by scanner: risk level {level}")
        self.level = level
        self.alerts = alerts


class MergeMissingInputs(BundleKeeperError):
    """One of the merge base, upstream or local snapshots is absent."""

    def __init__(self, unit: str, missing: list[str]):
        super().__init__(f"Cannot merge {unit}: missing {', '.join(missing)}")
        self.unit = unit
        self.missing = missing


class RollbackExhausted(BundleKeeperError):
    """The active snapshot is already the oldest one."""

    def __init__(self, unit: str):
        super().__init__(f"No previous version to roll back to for {unit}")
        self.unit = unit


class InvalidTransition(BundleKeeperError):
    """A pending-update step was requested out of order."""


class InvalidUnitName(BundleKeeperError):
    """A unit name cannot be used as a directory name."""

    def __init__(self, name: str):
        super().__init__(f"Invalid unit name: {name!r}")
        self.name = name
