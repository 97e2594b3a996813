"""Error taxonomy for the retention engine.

Per-unit and per-pool errors are caught where they occur and folded into
the pool's report; only PolicyMisconfigured is allowed to stop a run, and
only while the configuration is being loaded.
"""


class RetentionError(Exception):
    """Base class for retention engine errors."""
    def __init__(self, message, code='RetentionError'):
        super().__init__(message)
        self.message = message
        self.code = code


class PoolUnavailable(RetentionError):
    """Pool root is not reachable (e.g. removable media not attached)."""
    def __init__(self, pool_id, root=None):
        detail = f" at {root}" if root else ""
        super().__init__(f"Pool {pool_id} is not available{detail}", "PoolUnavailable")
        self.pool_id = pool_id


class MeasurementFailed(RetentionError):
    """Capacity of a reachable pool could not be read."""
    def __init__(self, pool_id, reason):
        super().__init__(f"Could not measure pool {pool_id}: {reason}", "MeasurementFailed")
        self.pool_id = pool_id


class UnitDeletionFailed(RetentionError):
    """A single backup unit could not be removed."""
    def __init__(self, unit_id, reason):
        super().__init__(f"Failed to delete {unit_id}: {reason}", "UnitDeletionFailed")
        self.unit_id = unit_id


class UnitCreationFailed(RetentionError):
    """A new backup unit could not be produced."""
    def __init__(self, pool_id, reason):
        super().__init__(f"Failed to create unit in {pool_id}: {reason}", "UnitCreationFailed")
        self.pool_id = pool_id


class PolicyMisconfigured(RetentionError):
    """Configuration or retention policy is invalid. Fatal at startup."""
    def __init__(self, message):
        super().__init__(message, "PolicyMisconfigured")


class CommandFailed(RetentionError):
    """External tool exited with a non-zero status."""
    def __init__(self, command, returncode, stderr=""):
        super().__init__(
            f"{command} exited with status {returncode}: {stderr.strip()}",
            "CommandFailed"
        )
        self.returncode = returncode


class CommandTimeout(RetentionError):
    """External tool or filesystem call exceeded its time budget."""
    def __init__(self, operation, timeout):
        super().__init__(f"{operation} timed out after {timeout}s", "CommandTimeout")
        self.timeout = timeout


class PoolBusy(RetentionError):
    """Another process holds the pool's exclusive lock."""
    def __init__(self, pool_id):
        super().__init__(f"Pool {pool_id} is locked by another run", "PoolBusy")
        self.pool_id = pool_id
