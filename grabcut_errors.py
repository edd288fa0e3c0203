class GrabCutError(Exception):
    pass


# Rejected before any computation starts
class InvalidInputError(GrabCutError, ValueError):
    pass


# Empty cluster, zero responsibility mass or singular covariance
class DegenerateModelError(GrabCutError, ArithmeticError):
    pass


# A residual capacity went negative during augmentation
class FlowInvariantViolation(GrabCutError, RuntimeError):
    pass


class NonConvergenceWarning(UserWarning):
    pass
