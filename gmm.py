import logging
import warnings
from dataclasses import dataclass, field

import numpy as np
from scipy.special import logsumexp
from sklearn.utils import check_random_state

import matrix_ops
from grabcut_errors import DegenerateModelError, InvalidInputError, NonConvergenceWarning

logger = logging.getLogger(__name__)

COVARIANCE_UPDATES = ("lagged", "current")
LOG_2PI = np.log(2 * np.pi)


@dataclass
class GaussianComponent:
    # need to store 5 things for each gaussian component:
    # µ – the mean (an RGB triple)
    # Σ – the covariance matrix (a 3x3 matrix)
    # π – a component weight (a real)
    # Σ^(−1) – the inverse of the covariance matrix, derived on construction
    # detΣ – the determinant of the covariance matrix, derived on construction
    mean: np.ndarray
    covariance: np.ndarray
    component_weight: float
    covariance_inverse: np.ndarray = field(init=False, repr=False)
    covariance_det: float = field(init=False, repr=False)

    def __post_init__(self):
        self.covariance_det = matrix_ops.determinant(self.covariance)
        self.covariance_inverse = matrix_ops.inverse(self.covariance)

    @property
    def dimension(self):
        return self.mean.shape[0]

    def log_density(self, samples):
        deviation = samples - self.mean
        mahalanobis = matrix_ops.quadratic_form(deviation, self.covariance_inverse)
        return -0.5 * (mahalanobis + self.dimension * LOG_2PI + np.log(self.covariance_det))

    def density(self, samples):
        return np.exp(self.log_density(samples))

    # -log(π) + log(detΣ)/2 + (x-µ)^T Σ^(-1) (x-µ)/2
    def cost(self, samples):
        deviation = samples - self.mean
        mahalanobis = matrix_ops.quadratic_form(deviation, self.covariance_inverse)
        return -np.log(self.component_weight) + 0.5 * np.log(self.covariance_det) + 0.5 * mahalanobis


@dataclass
class MixtureModel:
    components: list
    cluster: np.ndarray = None
    log_likelihood: float = None
    n_iter: int = 0
    converged: bool = False
    history: list = field(default_factory=list)

    @property
    def weights(self):
        return np.array([component.component_weight for component in self.components])

    def weighted_log_densities(self, samples):
        samples = matrix_ops.as_samples(samples)
        return np.column_stack([np.log(component.component_weight) + component.log_density(samples)
                                for component in self.components])

    def mixture_density(self, samples):
        return np.exp(logsumexp(self.weighted_log_densities(samples), axis=1))

    def score(self, samples):
        """Total log-likelihood of the samples under the mixture."""
        return float(logsumexp(self.weighted_log_densities(samples), axis=1).sum())

    def responsibilities(self, samples):
        weighted = self.weighted_log_densities(samples)
        return np.exp(weighted - logsumexp(weighted, axis=1)[:, np.newaxis])

    def predict(self, samples):
        """Hard-assign every sample to the component with the highest weighted density.

        np.argmax returns the first maximum, so ties go to the lowest component index.
        """
        return np.argmax(self.weighted_log_densities(samples), axis=1)

    def component_cost(self, samples, assignment=None):
        """Data term cost of each sample under its hard-assigned component."""
        samples = matrix_ops.as_samples(samples)
        if assignment is None:
            assignment = self.predict(samples)
        costs = np.column_stack([component.cost(samples) for component in self.components])
        return np.take_along_axis(costs, np.asarray(assignment)[:, np.newaxis], axis=1)[:, 0]


def _regularized(covariance, reg_covar):
    if reg_covar:
        covariance = covariance + reg_covar * np.eye(covariance.shape[0])
    return covariance


def initialize_mixture(samples, labels, n_components, reg_covar=0.0):
    components = []
    for k in range(n_components):
        cluster_samples = samples[labels == k]
        if len(cluster_samples) == 0:
            raise DegenerateModelError(f"cluster {k} is empty after random initialization")
        covariance = _regularized(matrix_ops.sample_covariance(cluster_samples), reg_covar)
        components.append(GaussianComponent(matrix_ops.mean_vector(cluster_samples), covariance,
                                            len(cluster_samples) / samples.shape[0]))
    return MixtureModel(components)


def maximization_step(samples, responsibilities, model, reg_covar=0.0, covariance_update="lagged"):
    total_mass = responsibilities.sum(axis=0)
    components = []
    for k, component in enumerate(model.components):
        n_k = total_mass[k]
        if not n_k > np.finfo(np.float64).eps:
            raise DegenerateModelError(f"component {k} lost all responsibility mass")
        gamma = responsibilities[:, k]
        mean = np.dot(gamma, samples) / n_k
        # "lagged" measures deviations from the previous iteration's mean
        center = component.mean if covariance_update == "lagged" else mean
        covariance = _regularized(matrix_ops.weighted_scatter(samples, gamma, center) / n_k, reg_covar)
        components.append(GaussianComponent(mean, covariance, n_k / samples.shape[0]))
    return MixtureModel(components)


def fit_gmm(samples, n_components, max_iter=100, tol=0.1, reg_covar=0.0,
            covariance_update="lagged", random_state=None):
    """
    Fit a K-component multivariate Gaussian mixture with Expectation-Maximization.

    Args:
        samples: (n, d) array of samples
        n_components: Number of mixture components K
        max_iter: Ceiling on EM iterations, reaching it emits a NonConvergenceWarning
        tol: Stop once the log-likelihood changes by less than this between iterations
        reg_covar: Value added to every covariance diagonal
        covariance_update: "lagged" computes the new covariance around the previous mean,
            "current" around the freshly estimated one
        random_state: None, int seed or numpy RandomState driving the initial cluster draw

    Returns:
        MixtureModel with `cluster` holding the hard assignment of each sample
    """
    samples = matrix_ops.as_samples(samples)
    n_samples = samples.shape[0]
    if n_components < 1:
        raise InvalidInputError(f"n_components must be positive, got {n_components}")
    if n_components > n_samples:
        raise InvalidInputError(f"cannot fit {n_components} components to {n_samples} samples")
    if max_iter < 1:
        raise InvalidInputError(f"max_iter must be positive, got {max_iter}")
    if covariance_update not in COVARIANCE_UPDATES:
        raise InvalidInputError(f"unknown covariance update {covariance_update!r}")

    random_state = check_random_state(random_state)
    labels = random_state.randint(0, n_components, size=n_samples)
    model = initialize_mixture(samples, labels, n_components, reg_covar)
    log_likelihood = model.score(samples)
    history = [log_likelihood]

    converged = False
    for n_iter in range(1, max_iter + 1):
        responsibilities = model.responsibilities(samples)
        model = maximization_step(samples, responsibilities, model, reg_covar, covariance_update)
        new_log_likelihood = model.score(samples)
        if not np.isfinite(new_log_likelihood):
            raise DegenerateModelError(f"log-likelihood diverged at iteration {n_iter}")
        history.append(new_log_likelihood)
        logger.debug(f"EM iteration {n_iter}: log-likelihood {new_log_likelihood:.4f}")

        change = abs(new_log_likelihood - log_likelihood)
        log_likelihood = new_log_likelihood
        if change < tol:
            converged = True
            break

    if not converged:
        warnings.warn(f"EM did not converge within {max_iter} iterations", NonConvergenceWarning)

    model.cluster = model.predict(samples)
    model.log_likelihood = log_likelihood
    model.n_iter = n_iter
    model.converged = converged
    model.history = history
    logger.info(f"Fitted {n_components}-component GMM on {n_samples} samples: "
                f"log-likelihood {log_likelihood:.4f} after {n_iter} iterations")
    return model
