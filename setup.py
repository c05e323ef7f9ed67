from setuptools import setup, find_packages

def find_version(path):
    import re
    # path shall be a plain ascii text file.
    s = open(path, 'rt').read()
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]",
                              s, re.M)
    if version_match:
        return version_match.group(1)
    raise RuntimeError("Version not found")

# the base dependencies
with open('requirements.txt', 'r') as fh:
    dependencies = [l.strip() for l in fh if l.strip()]

# extra dependencies
extras = {}
extras['test'] = ['pytest', 'runtests']

setup(name="polykit",
      version=find_version("polykit/version.py"),
      description="Power spectra, multipoles and polyspectra of particle sets, the massively parallel way",
      zip_safe=False,
      packages = find_packages('.', include=['polykit', 'polykit.*']),
      license='GPL3',
      install_requires=dependencies,
      extras_require=extras,
      entry_points={'console_scripts': ['polykit = polykit.cli:main']},
)
