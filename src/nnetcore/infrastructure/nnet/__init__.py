from ._nnet import Nnet

__all__ = [Nnet.__name__]
