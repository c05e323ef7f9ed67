"""
The polykit lab, containing all of the necessary ingredients to use polykit.
"""
from mpi4py import MPI
import numpy

# particles and results
from polykit.particles import ParticleCatalog, UniformCatalog
from polykit.binning import PowerSpectrumBinning, PolyspectrumBinning, BispectrumBinning

# grids
from polykit.meshtools import make_mesh
from polykit.painting import assign_particles_to_grid, deconvolve_window
from polykit.filters import smoothing_filter_fourier_space, TopHat, Gaussian, SharpK

# algorithms
from polykit.algorithms import *

from polykit import CurrentMPIComm, set_options, setup_logging
from polykit import io as IO
