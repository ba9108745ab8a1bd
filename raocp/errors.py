class RaocpError(Exception):
    """
    Base class for all errors raised by raocp
    """
    pass


class InvalidDistribution(RaocpError, ValueError):
    """
    Probability vector or transition matrix is malformed
    """
    pass


class InvalidHorizon(RaocpError, ValueError):
    """
    Horizon, branching horizon, stage or `ni` schedule is not valid
    """
    pass


class InvalidNodeId(RaocpError, IndexError):
    """
    Node index is not in the range of the scenario tree
    """
    pass


class UnmappedValue(RaocpError, KeyError):
    """
    Value of a node has no payload attached to it
    """

    def __init__(self, value, message=None):
        self.value = value
        super().__init__(message or f"[Tree] value ({value}) is not mapped to any data")

    def __str__(self):
        return str(self.args[0])


class DimensionMismatch(RaocpError, ValueError):
    """
    Sizes of vectors or matrices are not compatible
    """
    pass


class NonConvergence(RaocpError, RuntimeError):
    """
    Iterative risk evaluation did not converge within its iteration budget
    """
    pass


class IncompleteSpecification(RaocpError, ValueError):
    """
    Controller builder or node data is missing a required field
    """

    def __init__(self, field, message=None):
        self.field = field
        super().__init__(message or f"[Factory] controller specification is missing ({field})")


class SolveFailure(RaocpError, RuntimeError):
    """
    Underlying convex solver did not return an optimal solution
    """

    def __init__(self, status, reason=None):
        self.status = status
        self.reason = reason
        message = f"[Controller] solve failed with status ({status})"
        if reason:
            message += f": {reason}"
        super().__init__(message)
