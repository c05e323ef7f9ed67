"""
Command-line interface, running one estimator as described by a YAML
configuration file.

Example configuration:

.. code:: yaml

    estimator: bispectrum
    Nmesh: 64
    scheme: tsc
    particles:
        uniform: {csize: 100000, seed: 42}
    binning: {nbins: 8, kmin: 6.28, kmax: 100.}
    BoxSize: 1000.
    output: bispectrum.json

MPI usage: ``mpirun -n [n] polykit config.yaml``
"""
import argparse
import logging
import json
from collections import OrderedDict

import yaml

from polykit import CurrentMPIComm, setup_logging
from polykit.binning import PowerSpectrumBinning, PolyspectrumBinning, BispectrumBinning
from polykit.particles import ParticleCatalog, UniformCatalog
from polykit import algorithms

logger = logging.getLogger('polykit')

class ConfigurationError(Exception):
    pass

ESTIMATORS = ['power', 'power-interlacing', 'power-direct',
              'multipoles', 'multipoles-rsd',
              'bispectrum', 'polyspectrum']

REQUIRED = ['estimator', 'Nmesh', 'particles', 'binning', 'output']

DEFAULTS = OrderedDict([
    ('scheme', 'cic'),
    ('ndim', 3),
    ('ell_max', 2),
    ('los', None),
    ('velocity_to_displacement', None),
    ('order', 3),
    ('BoxSize', None),
    ])

def ordered_load(stream, Loader=yaml.SafeLoader, object_pairs_hook=OrderedDict):
    """
    Load from yaml into OrderedDict to preserve the ordering used
    by the user

    see: http://stackoverflow.com/questions/5121931/
    """
    class OrderedLoader(Loader):
        pass
    def construct_mapping(loader, node):
        loader.flatten_mapping(node)
        return object_pairs_hook(loader.construct_pairs(node))
    OrderedLoader.add_constructor(
        yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
        construct_mapping)
    return yaml.load(stream, OrderedLoader)

def _check_keys(section, config, allowed, required=()):
    unknown = [k for k in config if k not in allowed]
    if len(unknown):
        raise ConfigurationError("unknown keys in %s: %s" % (section, str(unknown)))
    missing = [k for k in required if k not in config]
    if len(missing):
        raise ConfigurationError("missing required keys in %s: %s" % (section, str(missing)))

def read_config(stream, output=None):
    """
    Read and validate a configuration file using YAML syntax, filling in
    the default values.

    Parameters
    ----------
    stream : str, file
        the YAML document
    output : str, optional
        if given, overrides the `output` key of the file

    Returns
    -------
    config : OrderedDict
        the validated configuration
    """
    try:
        config = ordered_load(stream)
    except yaml.YAMLError as e:
        raise ConfigurationError("error parsing YAML file: %s" % str(e))
    if not isinstance(config, dict):
        raise ConfigurationError("error parsing YAML file: no valid keys found")

    if output is not None:
        config['output'] = output

    _check_keys('configuration', config, REQUIRED + list(DEFAULTS), REQUIRED)
    for k in DEFAULTS:
        config.setdefault(k, DEFAULTS[k])

    if config['estimator'] not in ESTIMATORS:
        raise ConfigurationError("`estimator` should be one of %s; got '%s'" % (str(ESTIMATORS), config['estimator']))

    try:
        config['Nmesh'] = int(config['Nmesh'])
        config['ndim'] = int(config['ndim'])
        config['ell_max'] = int(config['ell_max'])
        config['order'] = int(config['order'])
    except (TypeError, ValueError) as e:
        raise ConfigurationError("unable to cast integer value: %s" % str(e))

    binning = config['binning']
    if not isinstance(binning, dict):
        raise ConfigurationError("`binning` should be a mapping with keys nbins, kmin, kmax and log")
    _check_keys('binning', binning, ['nbins', 'kmin', 'kmax', 'log'], ['nbins', 'kmin', 'kmax'])

    particles = config['particles']
    if not isinstance(particles, dict) or len(particles) != 1:
        raise ConfigurationError("`particles` should hold exactly one of `uniform` or `gadget`")
    kind, = particles.keys()
    if kind == 'uniform':
        _check_keys('particles.uniform', particles[kind], ['csize', 'seed', 'velocity_scale'], ['csize'])
    elif kind == 'gadget':
        _check_keys('particles.gadget', particles[kind], ['path', 'ptype'], ['path'])
    else:
        raise ConfigurationError("unknown particle source `%s`; use `uniform` or `gadget`" % kind)

    if config['estimator'] == 'multipoles-rsd' and config['velocity_to_displacement'] is None:
        raise ConfigurationError("`velocity_to_displacement` is required by the `multipoles-rsd` estimator")

    return config

@CurrentMPIComm.enable
def make_particles(config, comm=None):
    """ Build the particle catalog described by the `particles` section """
    kind, kwargs = list(config['particles'].items())[0]
    if kind == 'uniform':
        return UniformCatalog(ndim=config['ndim'], comm=comm, **kwargs)
    return ParticleCatalog.from_gadget(kwargs['path'], ptype=kwargs.get('ptype', 1), comm=comm)

@CurrentMPIComm.enable
def run(config, comm=None):
    """
    Run the estimator of a validated configuration.

    Returns
    -------
    result : PowerSpectrumBinning, list of PowerSpectrumBinning, PolyspectrumBinning
        the result, in units of `BoxSize` if it is given
    """
    particles = make_particles(config, comm=comm)
    estimator = config['estimator']
    Nmesh = config['Nmesh']
    scheme = config['scheme']
    binning = dict(config['binning'])

    if comm.rank == 0:
        logger.info("running `%s` on %d particles with Nmesh = %d" % (estimator, particles.csize, Nmesh))

    if estimator == 'power':
        result = algorithms.compute_power_spectrum(Nmesh, particles, PowerSpectrumBinning(**binning), scheme=scheme, comm=comm)
    elif estimator == 'power-interlacing':
        result = algorithms.compute_power_spectrum_interlacing(Nmesh, particles, PowerSpectrumBinning(**binning), scheme=scheme, comm=comm)
    elif estimator == 'power-direct':
        result = algorithms.compute_power_spectrum_direct_summation(Nmesh, particles.gather(root=Ellipsis),
                    PowerSpectrumBinning(**binning), comm=comm)
    elif estimator in ['multipoles', 'multipoles-rsd']:
        Pell = [PowerSpectrumBinning(**binning) for ell in range(config['ell_max'] + 1)]
        if estimator == 'multipoles-rsd':
            result = algorithms.compute_power_spectrum_multipoles(Nmesh, particles, config['velocity_to_displacement'],
                        Pell, scheme=scheme, comm=comm)
        else:
            los = config['los'] if config['los'] is not None else [0] * (particles.ndim - 1) + [1]
            cfield = algorithms.particles_to_fourier_space(Nmesh, particles, scheme=scheme, comm=comm)
            result = algorithms.compute_power_spectrum_multipoles_from_field(cfield, Pell, los, comm=comm)
            if particles.csize > 0:
                result[0].subtract_shotnoise(1. / particles.csize)
    elif estimator == 'bispectrum':
        result = algorithms.compute_bispectrum(Nmesh, particles, BispectrumBinning(**binning), scheme=scheme, comm=comm)
    else:
        polyofk = PolyspectrumBinning(order=config['order'], **binning)
        result = algorithms.compute_polyspectrum(Nmesh, particles, polyofk, scheme=scheme, comm=comm)

    BoxSize = config['BoxSize']
    if BoxSize is not None:
        ndim = particles.ndim
        if isinstance(result, list):
            for pofk in result:
                pofk.scale(1. / BoxSize, BoxSize ** ndim)
        elif isinstance(result, PolyspectrumBinning):
            result.scale(1. / BoxSize)
        else:
            result.scale(1. / BoxSize, BoxSize ** ndim)

    return result

@CurrentMPIComm.enable
def save(result, output, comm=None):
    """
    Save a result to JSON; multipoles are saved as a list of states
    under the key ``poles``.
    """
    from polykit.utils import JSONEncoder

    if not isinstance(result, list):
        return result.save(output, comm=comm)

    if comm.rank == 0:
        logger.info('saving %d multipoles to %s' % (len(result), output))
        with open(output, 'w') as ff:
            json.dump({'poles' : [pofk.__getstate__() for pofk in result]}, ff, cls=JSONEncoder)

def main(args=None):

    desc = "Compute a power spectrum, its multipoles or a polyspectrum "
    desc += "of a particle set, as described by a YAML configuration file.\n\n"
    desc += "MPI usage: mpirun -n [n] polykit config.yaml"
    parser = argparse.ArgumentParser(description=desc, formatter_class=argparse.RawDescriptionHelpFormatter)

    parser.add_argument('config', type=argparse.FileType('r'),
                        help='the name of the YAML configuration file')
    parser.add_argument('-o', '--output', default=None,
                        help='the output file; overrides the `output` key of the configuration')
    parser.add_argument('-v', '--verbose', action='store_const', dest='log_level',
                        const='debug', default='info',
                        help='turn on debug logging')

    ns = parser.parse_args(args)
    setup_logging(ns.log_level)

    with ns.config:
        config = read_config(ns.config, output=ns.output)

    comm = CurrentMPIComm.get()
    result = run(config, comm=comm)
    save(result, config['output'], comm=comm)

if __name__ == '__main__':
    main()
