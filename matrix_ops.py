import numpy as np

from grabcut_errors import DegenerateModelError, InvalidInputError


def as_samples(samples):
    samples = np.asarray(samples, dtype=np.float64)
    if samples.ndim == 1:
        samples = samples[:, np.newaxis]
    if samples.ndim != 2 or samples.shape[0] == 0:
        raise InvalidInputError(f"expected a non-empty (n, d) sample array, got shape {samples.shape}")
    return samples


def mean_vector(samples):
    return samples.sum(axis=0) / samples.shape[0]


# Unbiased sample covariance (divides by n - 1)
def sample_covariance(samples):
    n = samples.shape[0]
    if n < 2:
        raise DegenerateModelError(f"covariance needs at least 2 samples, got {n}")
    deviation = samples - mean_vector(samples)
    return np.dot(deviation.T, deviation) / (n - 1)


def weighted_scatter(samples, weights, center):
    deviation = samples - center
    return np.dot((weights[:, np.newaxis] * deviation).T, deviation)


def determinant(matrix):
    det = np.linalg.det(matrix)
    if not np.isfinite(det) or det <= 0:
        raise DegenerateModelError(f"covariance is not positive definite (det={det})")
    return det


def inverse(matrix):
    try:
        return np.linalg.inv(matrix)
    except np.linalg.LinAlgError as e:
        raise DegenerateModelError(f"covariance is singular: {e}") from e


def quadratic_form(deviation, matrix):
    """Row-wise d^T M d for a (n, d) array of deviations."""
    return np.einsum('nd,de,ne->n', deviation, matrix, deviation)


def color_distance(a, b):
    diff = np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)
    return np.sqrt((diff * diff).sum(axis=-1))
