"""Export format implementations."""

from rigcalib.io.formats.hdf5_format import HDF5Format
from rigcalib.io.formats.mat_format import MATFormat
from rigcalib.io.formats.json_format import JSONFormat

__all__ = [
    "HDF5Format",
    "MATFormat",
    "JSONFormat",
]
