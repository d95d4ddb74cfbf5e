"""
KCFTrack Correlation Filter - Kernelized Ridge Regression in the Fourier Domain

Translations of a patch form a circulant matrix, so ridge regression
over every shift reduces to element-wise operations on FFTs:

    k      = gaussian kernel correlation of x with itself
    alphaf = F(y) / (F(k) + lambda)
    resp   = F^-1(alphaf * F(kernel(z, x)))

The peak of the response is the target's displacement from the patch
center. All feature tensors are (rows, cols, channels).
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


def fft2(x: np.ndarray) -> np.ndarray:
    return np.fft.fft2(x, axes=(0, 1))


def ifft2(x: np.ndarray) -> np.ndarray:
    return np.fft.ifft2(x, axes=(0, 1))


def gaussian_peak(rows: int, cols: int, padding: float, output_sigma_factor: float) -> np.ndarray:
    """
    Desired regression output: a 2D gaussian centered in the response,
    returned in the frequency domain.
    """
    output_sigma = np.sqrt(rows * cols) / padding * output_sigma_factor
    mult = -0.5 / (output_sigma * output_sigma)

    ih = np.arange(rows, dtype=np.float64) - rows // 2
    jh = np.arange(cols, dtype=np.float64) - cols // 2
    res = np.exp(mult * (ih[:, None] ** 2 + jh[None, :] ** 2))
    return np.fft.fft2(res)


def gaussian_correlation(x1: np.ndarray, x2: np.ndarray, sigma: float) -> np.ndarray:
    """
    Gaussian kernel between x1 and every circular shift of x2.

    Args:
        x1, x2: feature tensors of identical shape (rows, cols, channels)
        sigma: kernel bandwidth

    Returns:
        (rows, cols) kernel response, zero shift at the center
    """
    if x1.shape != x2.shape:
        raise ValueError(f"Feature shape mismatch: {x1.shape} != {x2.shape}")
    if x1.ndim == 2:
        x1 = x1[..., None]
        x2 = x2[..., None]

    spectrum = fft2(x1) * np.conj(fft2(x2))
    corr = np.real(ifft2(spectrum)).sum(axis=2)
    corr = np.fft.fftshift(corr)

    d = (np.sum(x1 * x1) + np.sum(x2 * x2) - 2.0 * corr) / x1.size
    d = np.maximum(d, 0.0)
    return np.exp(-d / (sigma * sigma))


def sub_pixel_peak(left: float, center: float, right: float) -> float:
    """Parabolic refinement of a peak from its two neighbours."""
    divisor = 2.0 * center - right - left
    if divisor == 0:
        return 0.0
    return 0.5 * (right - left) / divisor


def peak_to_sidelobe(response: np.ndarray, px: int, py: int) -> float:
    """
    Peak-to-sidelobe ratio around (px, py).

    Computed on a copy of the response rescaled to [0, 255]. The sidelobe
    is the square of radius cols/4 around the peak minus a small square
    of radius cols/16 at its center.
    """
    rows, cols = response.shape
    lo, hi = float(response.min()), float(response.max())
    if not hi > lo:
        return 0.0
    normalized = (response - lo) * (255.0 / (hi - lo))

    win = cols // 4
    x0, y0 = max(px - win, 0), max(py - win, 0)
    mask = np.zeros((rows, cols), dtype=bool)
    mask[y0:min(y0 + 2 * win, rows), x0:min(x0 + 2 * win, cols)] = True

    inner = win // 4
    ix, iy = max(px - inner, 0), max(py - inner, 0)
    mask[iy:min(iy + win // 2, rows), ix:min(ix + win // 2, cols)] = False

    sidelobe = normalized[mask]
    if sidelobe.size == 0:
        return 0.0
    std = float(sidelobe.std())
    if std == 0:
        return 0.0
    return (float(normalized[py, px]) - float(sidelobe.mean())) / std


@dataclass(frozen=True)
class FilterModel:
    """Appearance template and filter coefficients, always updated together."""
    template: np.ndarray
    alphaf: np.ndarray

    def blend(self, other: "FilterModel", factor: float) -> "FilterModel":
        """(1 - factor) * self + factor * other, for both buffers."""
        return FilterModel(
            template=(1.0 - factor) * self.template + factor * other.template,
            alphaf=(1.0 - factor) * self.alphaf + factor * other.alphaf,
        )


@dataclass(frozen=True)
class Detection:
    """Result of searching one patch."""
    dx: float           # displacement from the patch center, in cells
    dy: float
    peak_value: float
    psr: float


class CorrelationFilter:
    """
    Kernelized correlation filter for one target.

    Args:
        target_f: desired response in the frequency domain (see gaussian_peak)
        sigma: gaussian kernel bandwidth
        lambda_: ridge regularization
    """

    def __init__(self, target_f: np.ndarray, sigma: float, lambda_: float):
        self.target_f = target_f
        self.sigma = sigma
        self.lambda_ = lambda_
        self.model: Optional[FilterModel] = None

    @property
    def is_trained(self) -> bool:
        return self.model is not None

    @property
    def template(self) -> Optional[np.ndarray]:
        return None if self.model is None else self.model.template

    def correlate(self, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
        return gaussian_correlation(x1, x2, self.sigma)

    def train(self, x: np.ndarray, interp_factor: float):
        """Fit the filter to x and blend it into the model."""
        k = self.correlate(x, x)
        alphaf = self.target_f / (np.fft.fft2(k) + self.lambda_)
        fresh = FilterModel(template=x, alphaf=alphaf)

        if self.model is None:
            self.model = fresh
        else:
            self.model = self.model.blend(fresh, interp_factor)

    def response(self, z: np.ndarray, x: np.ndarray) -> np.ndarray:
        """Response surface of candidate features x against template z."""
        k = self.correlate(x, z)
        return np.real(np.fft.ifft2(self.model.alphaf * np.fft.fft2(k)))

    def detect(self, z: np.ndarray, x: np.ndarray) -> Detection:
        """
        Locate the template z in the candidate features x.

        Returns:
            Detection with the sub-pixel displacement from the center,
            the raw peak value and the PSR
        """
        res = self.response(z, x)
        rows, cols = res.shape
        py, px = np.unravel_index(int(np.argmax(res)), res.shape)
        peak_value = float(res[py, px])

        fx, fy = float(px), float(py)
        if 0 < px < cols - 1:
            fx += sub_pixel_peak(res[py, px - 1], peak_value, res[py, px + 1])
        if 0 < py < rows - 1:
            fy += sub_pixel_peak(res[py - 1, px], peak_value, res[py + 1, px])

        return Detection(
            dx=fx - cols / 2.0,
            dy=fy - rows / 2.0,
            peak_value=peak_value,
            psr=peak_to_sidelobe(res, int(px), int(py)),
        )

