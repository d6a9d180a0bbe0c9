"""Adapter around trained OpenCV statistical models.

A classifier is anything with ``predict(image, x=0, y=0)`` returning a
category code. ``StatModelClassifier`` provides that for ``cv.ml`` models
(k-nearest neighbours, SVM, decision trees) saved with ``model.save()``.

Samples are the glyph crop resized to ``SAMPLE_SIZE`` x ``SAMPLE_SIZE``,
flattened, followed by one row of ``SAMPLE_SIZE`` size/position features:
rows, cols, x, y, then zeros.
"""

import logging
import os

import cv2 as cv
import numpy as np

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 20

_LOADERS = {
    "knn": cv.ml.KNearest_load,
    "svm": cv.ml.SVM_load,
    "dtrees": cv.ml.DTrees_load,
}


def remove_horizontal_strokes(img):
    """Drop horizontal strokes (staff line remnants) and binarize."""
    kernel = cv.getStructuringElement(cv.MORPH_RECT, (10, 1))
    closed = cv.erode(cv.dilate(img, kernel), kernel)
    tmp = cv.add(img, cv.bitwise_not(closed))
    _, tmp = cv.threshold(tmp, 0, 255, cv.THRESH_TOZERO_INV + cv.THRESH_OTSU)
    return cv.bitwise_not(tmp)


def make_sample(img, x=0, y=0, preprocess=False):
    """Feature row (1 x SAMPLE_SIZE*(SAMPLE_SIZE+1), float32) for one crop."""
    if len(img.shape) == 3:
        img = cv.cvtColor(img, cv.COLOR_BGR2GRAY)
    size_features = np.zeros(SAMPLE_SIZE, dtype=np.float32)
    size_features[:4] = (img.shape[0], img.shape[1], x, y)

    if preprocess:
        img = remove_horizontal_strokes(img)
    resized = cv.resize(img, (SAMPLE_SIZE, SAMPLE_SIZE),
                        interpolation=cv.INTER_CUBIC).astype(np.float32)
    return np.concatenate([resized.ravel(), size_features]).reshape(1, -1)


class StatModelClassifier:
    """Classify glyph crops with a trained ``cv.ml.StatModel``.

    Args:
        model: a trained k-NN, SVM or DTrees model.
        preprocess: strip horizontal strokes before vectorising; must match
            how the model was trained.
        k: neighbour count for k-NN models (ignored otherwise).
    """

    def __init__(self, model, preprocess=False, k=3):
        self.model = model
        self.preprocess = preprocess
        self.k = k

    def predict(self, img, x=0, y=0):
        if img.size == 0:
            return None
        sample = make_sample(img, x, y, preprocess=self.preprocess)
        if hasattr(self.model, "findNearest"):
            _, results, _, _ = self.model.findNearest(sample, self.k)
        else:
            _, results = self.model.predict(sample)
        return float(np.asarray(results).ravel()[0])


def load_classifier(path, kind="knn", preprocess=False, k=3):
    """Load a saved ``cv.ml`` model and wrap it.

    Raises:
        FileNotFoundError: the model file does not exist.
        ValueError: ``kind`` is not one of knn, svm, dtrees.
    """
    if kind not in _LOADERS:
        raise ValueError(f"Unknown model kind {kind!r}, expected one of {sorted(_LOADERS)}")
    if not os.path.exists(path):
        raise FileNotFoundError(f"Model not found: {path}")
    model = _LOADERS[kind](path)
    logger.info("Loaded %s model from %s", kind, path)
    return StatModelClassifier(model, preprocess=preprocess, k=k)
