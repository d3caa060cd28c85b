"""
Printing subsystem for Receipt Printer.

This package groups printing-related functionality:

- images: Pillow bitmaps to 1-bit rasters at the printer's line width
- markup: receipt markup to print directives
- encoder: print directives to ESC/POS bytes
- transports / connection: byte streams to the printer and their lifecycle
- session: one-job-at-a-time print orchestration
- worker: Background job queue and job registry

For convenience, common names are re-exported for easy import.
"""

from .connection import *
from .directives import *
from .encoder import encode
from .images import *
from .markup import compile_markup
from .session import *
from .worker import *
