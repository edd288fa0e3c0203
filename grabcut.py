import argparse
import logging
import time
import warnings
from dataclasses import dataclass

import cv2
import numpy as np

from gmm import fit_gmm
from grabcut_config import SegmentationConfig, make_args
from grabcut_errors import DegenerateModelError, InvalidInputError, NonConvergenceWarning
from grabcut_graph import PIXEL_OFFSET, SINK, SOURCE, build_graph, constraint_mask, node_to_pixel
from mincut import min_cut

logger = logging.getLogger(__name__)

GC_BGD = 0  # Background pixel
GC_FGD = 1  # Foreground pixel


@dataclass
class SegmentationResult:
    image: np.ndarray  # (N, 4) RGB with alpha normalized to 1
    mask: np.ndarray  # (N,) GC_FGD / GC_BGD
    iterations: int
    converged: bool


# Packed row-major RGBA buffer (4 bytes per pixel) to (N, 3) RGB samples
def rgba_to_rgb(rgba, width, height):
    if width < 1 or height < 1:
        raise InvalidInputError(f"image dimensions must be positive, got {width}x{height}")
    if isinstance(rgba, (bytes, bytearray, memoryview)):
        buffer = np.frombuffer(rgba, dtype=np.uint8)
    else:
        buffer = np.asarray(rgba, dtype=np.uint8)
    if buffer.size != 4 * width * height:
        raise InvalidInputError(f"RGBA buffer holds {buffer.size} values, expected {4 * width * height}")
    rgb = cv2.cvtColor(np.ascontiguousarray(buffer.reshape(height, width, 4)), cv2.COLOR_RGBA2RGB)
    return rgb.reshape(-1, 3).astype(np.float64)


def rgb_to_rgba(pixels):
    return np.column_stack((pixels, np.ones(len(pixels))))


def masks_differ(new_mask, old_mask):
    if len(new_mask) != len(old_mask):
        raise InvalidInputError(f"mask sizes differ: {len(new_mask)} != {len(old_mask)}")
    return bool(np.any(new_mask != old_mask))


def fit_color_models(pixels, mask, config):
    models = []
    for name, label in (("foreground", GC_FGD), ("background", GC_BGD)):
        class_pixels = pixels[mask == label]
        if len(class_pixels) == 0:
            raise DegenerateModelError(f"{name} partition is empty, cannot fit its colour model")
        models.append(fit_gmm(class_pixels, config.n_components,
                              max_iter=config.em_max_iterations,
                              tol=config.em_tolerance,
                              reg_covar=config.covariance_regularization,
                              covariance_update=config.covariance_update,
                              # same seed per fit, an unchanged partition refits to the same models
                              random_state=config.random_state))
    return models


def refine_mask(pixels, width, height, mask, fg_confirmed, bg_confirmed, config):
    """
    One refinement step: fit both colour models on the partition given by `mask`,
    cut the GrabCut graph and label every source-side pixel foreground.

    Returns:
        new_mask: (N,) uint8 mask
        cut_value: Max-flow value of the cut
    """
    if np.any(~(fg_confirmed | bg_confirmed)):
        fg_model, bg_model = fit_color_models(pixels, mask, config)
    else:
        # every T-link is a hard constraint, colour models would never be read
        fg_model, bg_model = None, None

    capacity = build_graph(pixels, width, height, fg_model, bg_model,
                           np.flatnonzero(fg_confirmed), np.flatnonzero(bg_confirmed),
                           data_term_scale=config.data_term_scale,
                           smoothness_scale=config.smoothness_scale)
    cut = min_cut(capacity, SOURCE, SINK, solver=config.solver)

    new_mask = np.full(len(pixels), GC_BGD, dtype=np.uint8)
    source_pixels = np.fromiter((node for node in cut.source_side if node >= PIXEL_OFFSET), dtype=np.int64)
    new_mask[node_to_pixel(source_pixels)] = GC_FGD
    return new_mask, cut.flow_value


def grabcut(rgba, width, height, foreground_indices, background_indices, config=None):
    """
    Segment an RGBA image given confirmed foreground and background pixels.

    Args:
        rgba: Packed row-major RGBA buffer (bytes or uint8 array), 4 values per pixel
        width, height: Image dimensions
        foreground_indices: Flat pixel indices confirmed as foreground
        background_indices: Flat pixel indices confirmed as background
        config: SegmentationConfig, defaults when None

    Returns:
        SegmentationResult
    """
    if config is None:
        config = SegmentationConfig()
    pixels = rgba_to_rgb(rgba, width, height)
    num_pixels = len(pixels)

    fg_confirmed = constraint_mask(foreground_indices, num_pixels)
    bg_confirmed = constraint_mask(background_indices, num_pixels)
    if np.any(fg_confirmed & bg_confirmed):
        raise InvalidInputError("confirmed foreground and background indices overlap")
    if np.any(~(fg_confirmed | bg_confirmed)) and not np.any(bg_confirmed):
        raise InvalidInputError("at least one confirmed background pixel is needed to fit the background model")

    # Initial trimap partition: everything not confirmed background may be foreground
    mask = np.where(bg_confirmed, GC_BGD, GC_FGD).astype(np.uint8)

    converged = False
    for iteration in range(1, config.max_iterations + 1):
        new_mask, cut_value = refine_mask(pixels, width, height, mask, fg_confirmed, bg_confirmed, config)
        changed = masks_differ(new_mask, mask)
        mask = new_mask
        logger.info(f"Iteration {iteration} - cut value: {cut_value}, "
                    f"{int(mask.sum())}/{num_pixels} foreground pixels")
        if not changed:
            converged = True
            break

    if not converged:
        warnings.warn(f"segmentation did not converge within {config.max_iterations} iterations",
                      NonConvergenceWarning)

    return SegmentationResult(rgb_to_rgba(pixels), mask, iteration, converged)


def cal_metric(predicted_mask, gt_mask):
    correct_pixels_amount = np.count_nonzero(predicted_mask == gt_mask)
    accuracy = correct_pixels_amount / predicted_mask.size

    intersection = np.logical_and(predicted_mask, gt_mask)
    union = np.logical_or(predicted_mask, gt_mask)
    jaccard_similarity = np.sum(intersection) / np.sum(union)

    return accuracy, jaccard_similarity


# Flat indices of the pixels inside rect = (x, y, w, h)
def rect_indices(width, height, rect):
    x, y, w, h = rect
    rows, cols = np.mgrid[max(y, 0):min(y + h, height), max(x, 0):min(x + w, width)]
    return (rows * width + cols).ravel()


# Flat indices of the band of `margin` pixels along the image border
def border_indices(width, height, margin):
    band = np.zeros((height, width), dtype=bool)
    if margin > 0:
        band[:margin, :] = True
        band[-margin:, :] = True
        band[:, :margin] = True
        band[:, -margin:] = True
    return np.flatnonzero(band)


def parse():
    parser = argparse.ArgumentParser()
    parser.add_argument('--input_img_path', type=str, required=True, help='image to segment')
    parser.add_argument('--fg_rect', type=str, default='', help='confirmed foreground rect (x,y,w,h)')
    parser.add_argument('--bg_margin', type=int, default=1, help='border band confirmed as background')
    parser.add_argument('--output_mask', type=str, default='mask.png', help='where to write the 0/255 mask')
    parser.add_argument('--gt_path', type=str, default='', help='ground truth mask, prints metrics when given')
    make_args(parser)
    return parser.parse_args()


def main():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    start_time = time.time()
    args = parse()

    img = cv2.imread(args.input_img_path)
    if img is None:
        raise FileNotFoundError(f"could not read image {args.input_img_path}")
    height, width = img.shape[:2]
    rgba = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)

    fg_indices = rect_indices(width, height, tuple(map(int, args.fg_rect.split(',')))) if args.fg_rect else []
    bg_indices = np.setdiff1d(border_indices(width, height, args.bg_margin), fg_indices)

    result = grabcut(rgba, width, height, fg_indices, bg_indices, SegmentationConfig.from_args(args))
    mask = result.mask.reshape(height, width)
    cv2.imwrite(args.output_mask, 255 * mask)
    logger.info(f"Mask written to {args.output_mask} after {result.iterations} iterations "
                f"(converged: {result.converged})")

    if args.gt_path:
        gt_mask = cv2.imread(args.gt_path, cv2.IMREAD_GRAYSCALE)
        gt_mask = cv2.threshold(gt_mask, 0, 1, cv2.THRESH_BINARY)[1]
        acc, jac = cal_metric(mask, gt_mask)
        logger.info(f'Accuracy={acc}, Jaccard={jac}')
    logger.info("--- %s seconds ---" % (time.time() - start_time))


if __name__ == '__main__':
    main()
