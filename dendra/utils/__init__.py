"""
Simple utilities used by the simulation code.
"""
import functools

from .logging import get_logger, get_level, set_level


def partial(method, **kwargs):
    """
    Adapt a method... and keep it's name.
    """
    get = functools.partial(method, **kwargs)
    get.__name__ = method.__name__
    return get
