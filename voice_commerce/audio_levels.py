"""
Audio level analysis for 16-bit PCM frames.

Levels are normalized to [0, 1] against full scale (32768).
"""

import numpy as np

FULL_SCALE = 32768.0
NOISE_FLOOR_FRACTION = 0.1


def pcm16_to_float(pcm: bytes) -> np.ndarray:
    """Little-endian signed 16-bit PCM -> float samples in [-1, 1]."""
    usable = len(pcm) - len(pcm) % 2
    return np.frombuffer(pcm[:usable], dtype="<i2").astype(np.float64) / FULL_SCALE


def rms_level(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(min(1.0, np.sqrt(np.mean(np.square(samples)))))


def noise_level(samples: np.ndarray) -> float:
    """
    RMS of the quietest 10% of spectral magnitudes, on the same amplitude
    scale as `rms_level`.

    Speech concentrates energy in a few bands; the quietest bins track the
    background. Magnitudes are divided by sqrt(N) so a white-noise bin reads
    about the noise's own RMS (Parseval).
    """
    if samples.size < 2:
        return 0.0
    spectrum = np.abs(np.fft.rfft(samples)) / np.sqrt(samples.size)
    count = max(1, int(spectrum.size * NOISE_FLOOR_FRACTION))
    quietest = np.sort(spectrum)[:count]
    return float(min(1.0, np.sqrt(np.mean(np.square(quietest)))))


def levels(pcm: bytes) -> tuple[float, float]:
    """(audio level, noise level) for one PCM16 frame."""
    samples = pcm16_to_float(pcm)
    return rms_level(samples), noise_level(samples)
