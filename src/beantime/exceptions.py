"""Custom exceptions for beantime."""


class BeanTimeError(Exception):
    """Base exception for beantime."""

    pass


class ModelLoadError(BeanTimeError):
    """Raised when a model artifact cannot be located or opened."""

    pass


class InferenceError(BeanTimeError):
    """Raised when the inference engine fails or returns an unexpected shape."""

    pass


class DecodeError(BeanTimeError):
    """Raised when an image cannot be decoded into a pixel buffer."""

    pass
