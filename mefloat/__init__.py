from .mefloat import *
from .mefloat import __all__
