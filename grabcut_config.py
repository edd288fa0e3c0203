import argparse
from dataclasses import dataclass, fields

from grabcut_errors import InvalidInputError
from gmm import COVARIANCE_UPDATES
from mincut import SOLVERS


@dataclass
class SegmentationConfig:
    n_components: int = 5
    max_iterations: int = 100
    em_max_iterations: int = 100
    em_tolerance: float = 0.1
    covariance_update: str = "lagged"
    covariance_regularization: float = 1e-6
    data_term_scale: float = 10000
    smoothness_scale: float = 1000
    solver: str = "augmenting_path"
    random_state: int = None

    def __post_init__(self):
        for name in ("n_components", "max_iterations", "em_max_iterations"):
            if getattr(self, name) < 1:
                raise InvalidInputError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("data_term_scale", "smoothness_scale"):
            if getattr(self, name) <= 0:
                raise InvalidInputError(f"{name} must be positive, got {getattr(self, name)}")
        if self.em_tolerance < 0 or self.covariance_regularization < 0:
            raise InvalidInputError("em_tolerance and covariance_regularization must be non-negative")
        if self.covariance_update not in COVARIANCE_UPDATES:
            raise InvalidInputError(f"covariance_update must be one of {COVARIANCE_UPDATES}")
        if self.solver not in SOLVERS:
            raise InvalidInputError(f"solver must be one of {SOLVERS}")

    @classmethod
    def from_args(cls, args):
        return cls(**{f.name: getattr(args, f.name) for f in fields(cls) if hasattr(args, f.name)})


def make_args(parser=None):
    if parser is None:
        parser = argparse.ArgumentParser(description="GrabCut segmentation with EM colour models and min-cut")
    defaults = SegmentationConfig()

    parser.add_argument("--n_components", type=int, default=defaults.n_components, help="GMM components per class")
    parser.add_argument("--max_iterations", type=int, default=defaults.max_iterations,
                        help="ceiling on refit/cut iterations")
    parser.add_argument("--em_max_iterations", type=int, default=defaults.em_max_iterations,
                        help="ceiling on EM iterations per fit")
    parser.add_argument("--em_tolerance", type=float, default=defaults.em_tolerance,
                        help="log-likelihood change that stops EM")
    parser.add_argument("--covariance_update", type=str, default=defaults.covariance_update,
                        choices=COVARIANCE_UPDATES, help="mean used for the M-step covariance")
    parser.add_argument("--covariance_regularization", type=float, default=defaults.covariance_regularization,
                        help="value added to covariance diagonals")
    parser.add_argument("--data_term_scale", type=float, default=defaults.data_term_scale)
    parser.add_argument("--smoothness_scale", type=float, default=defaults.smoothness_scale)
    parser.add_argument("--solver", type=str, default=defaults.solver, choices=SOLVERS, help="min-cut backend")
    parser.add_argument("--random_state", type=int, default=defaults.random_state, help="seed of the EM initialization")
    return parser
