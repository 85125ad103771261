from setuptools import setup


setup(name='ddkrylov',
      packages=['ddkrylov'],
      version='0.1.0',
      description='Krylov subspace methods for domain decomposition',
      long_description=open('README.md').read(),
      long_description_content_type="text/markdown",
      install_requires=['numpy (>=1.17)', 'scipy (>=1.4)'],
      extras_require={
          'mpi': ['mpi4py'],
          'test': ['pytest'],
          },
      python_requires=">=3.6",
      classifiers=[
          'Development Status :: 4 - Beta',
          'Intended Audience :: Science/Research',
          'Operating System :: OS Independent',
          'Programming Language :: Python',
          'Programming Language :: Python :: 3',
          'Topic :: Scientific/Engineering :: Mathematics'
          ],
      )
