from runtests.mpi import MPITest
from polykit import setup_logging, CurrentMPIComm
from polykit.cli import read_config, run, save, main, ConfigurationError
from polykit.binning import PowerSpectrumBinning, BispectrumBinning
from polykit.utils import JSONDecoder
from numpy.testing import assert_allclose
import numpy
import json
import os
import shutil
import tempfile
import pytest

setup_logging("debug")

POWER = """
estimator: power
Nmesh: 16
scheme: tsc
particles:
    uniform: {csize: 2000, seed: 42}
binning: {nbins: 4, kmin: 6.28, kmax: 40.}
output: pofk.json
"""

def _tmpdir(comm):
    path = tempfile.mkdtemp() if comm.rank == 0 else None
    return comm.bcast(path)

def test_read_config():
    config = read_config(POWER)
    assert list(config)[:5] == ['estimator', 'Nmesh', 'scheme', 'particles', 'binning']
    assert config['Nmesh'] == 16
    assert config['scheme'] == 'tsc'

    # defaults
    assert config['ndim'] == 3
    assert config['ell_max'] == 2
    assert config['BoxSize'] is None

    config = read_config(POWER, output='other.json')
    assert config['output'] == 'other.json'

def test_bad_configs():

    # not a mapping
    with pytest.raises(ConfigurationError):
        read_config("- a\n- b\n")

    # unknown key
    with pytest.raises(ConfigurationError):
        read_config(POWER + "interlaced: true\n")

    # missing key
    with pytest.raises(ConfigurationError):
        read_config(POWER.replace("Nmesh: 16\n", ""))

    # unknown estimator
    with pytest.raises(ConfigurationError):
        read_config(POWER.replace("estimator: power", "estimator: trispectrum"))

    # bad integer
    with pytest.raises(ConfigurationError):
        read_config(POWER.replace("Nmesh: 16", "Nmesh: many"))

    # bad binning
    with pytest.raises(ConfigurationError):
        read_config(POWER.replace("nbins: 4, ", ""))

    # unknown particle source
    with pytest.raises(ConfigurationError):
        read_config(POWER.replace("uniform: {csize: 2000, seed: 42}", "lognormal: {csize: 2000}"))

    # velocities are needed to go to redshift space
    with pytest.raises(ConfigurationError):
        read_config(POWER.replace("estimator: power", "estimator: multipoles-rsd"))

@MPITest([1, 4])
def test_run_power(comm):

    config = read_config(POWER)
    pofk = run(config, comm=comm)
    assert isinstance(pofk, PowerSpectrumBinning)
    assert pofk.normalized and not pofk.scaled
    assert numpy.isfinite(pofk.pofk).all()

    # in units of the box
    config['BoxSize'] = 100.
    pofk2 = run(config, comm=comm)
    assert pofk2.scaled
    assert_allclose(pofk2.k, pofk.k / 100.)
    assert_allclose(pofk2.pofk, pofk.pofk * 100.**3)

@MPITest([1, 4])
def test_run_multipoles(comm):

    config = read_config(POWER.replace("estimator: power", "estimator: multipoles"))
    poles = run(config, comm=comm)
    assert len(poles) == 3

    # the monopole is the power spectrum
    config['estimator'] = 'power'
    config['scheme'] = 'tsc'
    pofk = run(config, comm=comm)
    assert_allclose(poles[0].pofk, pofk.pofk, rtol=1e-8, atol=1e-14)

    text = POWER.replace("estimator: power", "estimator: multipoles-rsd")
    text = text.replace("seed: 42}", "seed: 42, velocity_scale: 0.01}")
    config = read_config(text + "velocity_to_displacement: 1.0\nell_max: 4\n")
    poles = run(config, comm=comm)
    assert len(poles) == 5

@MPITest([1, 4])
def test_run_bispectrum(comm):

    text = POWER.replace("estimator: power", "estimator: bispectrum")
    text = text.replace("{nbins: 4, kmin: 6.28, kmax: 40.}", "{nbins: 3, kmin: 6.29, kmax: 25.}")
    config = read_config(text + "BoxSize: 10.\n")
    bofk = run(config, comm=comm)

    assert isinstance(bofk, BispectrumBinning)
    assert_allclose(bofk.k, numpy.linspace(6.29, 25., 3) / 10.)

@MPITest([1, 4])
def test_save_multipoles(comm):

    tmpdir = _tmpdir(comm)
    output = os.path.join(tmpdir, 'poles.json')

    config = read_config(POWER.replace("estimator: power", "estimator: multipoles"))
    poles = run(config, comm=comm)
    save(poles, output, comm=comm)
    comm.barrier()

    with open(output, 'r') as ff:
        state = json.load(ff, cls=JSONDecoder)
    assert len(state['poles']) == 3
    assert_allclose(state['poles'][2]['pofk'], poles[2].pofk)

    comm.barrier()
    if comm.rank == 0:
        shutil.rmtree(tmpdir)

@MPITest([1, 4])
def test_main(comm):

    tmpdir = _tmpdir(comm)
    filename = os.path.join(tmpdir, 'config.yaml')
    output = os.path.join(tmpdir, 'bofk.json')

    if comm.rank == 0:
        text = POWER.replace("estimator: power", "estimator: bispectrum")
        text = text.replace("{nbins: 4, kmin: 6.28, kmax: 40.}", "{nbins: 2, kmin: 6.29, kmax: 25.}")
        with open(filename, 'w') as ff:
            ff.write(text)
    comm.barrier()

    with CurrentMPIComm.enter(comm):
        main([filename, "-o", output, "-v"])
    comm.barrier()

    bofk = BispectrumBinning.load(output, comm=comm)
    assert bofk.nbins == 2
    assert bofk.computed.all()

    comm.barrier()
    if comm.rank == 0:
        shutil.rmtree(tmpdir)
