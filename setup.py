from setuptools import setup, find_packages

setup(name='BSTS_simstudy',
      version='0.1',
      description='Simulation study of causal impact estimation with Bayesian structural time series',
      url='',
      author='Milaim Kas',
      author_email='milaim.kas@gmail.com',
      license='MIT',
      packages=find_packages(exclude=['tests']),
      package_data={'BSTS_simstudy.sim_impact': ['*.yaml']},
      install_requires=[
          'numpy', 'pandas', 'scipy', 'statsmodels', 'matplotlib', 'seaborn', 'tqdm', 'pyyaml',
          'tfcausalimpact', 'tensorflow', 'tensorflow-probability'
      ],
      extras_require={'test': ['pytest']},
      zip_safe=False)
