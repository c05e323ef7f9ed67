# FFT-based power spectra
from .fftpower import (bin_up_power_spectrum,
                       particles_to_fourier_space,
                       compute_power_spectrum,
                       compute_power_spectrum_interlacing,
                       compute_power_spectrum_direct_summation)

# multipoles
from .multipoles import (compute_power_spectrum_multipoles_from_field,
                         compute_power_spectrum_multipoles,
                         legendre_coefficient)

# higher order
from .polyspectrum import (compute_polyspectrum_from_field,
                           compute_bispectrum_from_field,
                           compute_bispectrum,
                           compute_polyspectrum)

__all__ = ['bin_up_power_spectrum',
           'particles_to_fourier_space',
           'compute_power_spectrum',
           'compute_power_spectrum_interlacing',
           'compute_power_spectrum_direct_summation',
           'compute_power_spectrum_multipoles_from_field',
           'compute_power_spectrum_multipoles',
           'legendre_coefficient',
           'compute_polyspectrum_from_field',
           'compute_bispectrum_from_field',
           'compute_bispectrum',
           'compute_polyspectrum',
          ]
